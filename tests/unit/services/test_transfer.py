import numpy as np
import pytest
from factories import InMemoryCodec, make_bufferset, make_image, make_ramp
from imagebufferio.config import Settings
from imagebufferio.contracts.buffers import BufferArena, BufferSet
from imagebufferio.contracts.elements import CodecType, ElementType
from imagebufferio.contracts.errors import (
    ArenaMismatch, BufferMismatch, CreateFailed, InvalidDimensions, OpenFailed,
    Operation, TransferFailed, UnsupportedElementType,
)
from imagebufferio.services.transfer import RasterBufferTransfer


def _svc(codec=None, **kw) -> RasterBufferTransfer:
    return RasterBufferTransfer(codec=codec or InMemoryCodec(), settings=Settings(**kw))


# ---------- lectura ----------
def test_read_4x3x2_scenario():
    codec = InMemoryCodec(images={"img.tif": make_image(4, 3, 2)})
    bs = _svc(codec).read_image("img.tif", ElementType.UINT8)
    assert bs.dimensions.as_list() == [4, 3, 2]
    assert len(bs) == 2
    assert all(len(a) == 12 for a in bs)
    assert bs[0][0] == codec.images["img.tif"][0, 0, 0]
    np.testing.assert_array_equal(bs.band_2d(1), codec.images["img.tif"][1])

def test_read_converts_to_requested_type():
    codec = InMemoryCodec(images={"img.tif": make_image(4, 3, 1)})
    bs = _svc(codec).read_image("img.tif", "float64")
    assert bs[0].dtype == np.float64
    assert bs.element_type is ElementType.FLOAT64

def test_read_uses_one_scratch_and_closes():
    codec = InMemoryCodec(images={"img.tif": make_image(5, 7, 3)})
    _svc(codec).read_image("img.tif", ElementType.INT16)
    # 3 bandas + 1 temporal
    assert codec.allocations == 4
    assert codec.arena.live == 3
    assert codec.reads == [(b, r, 1) for b in (1, 2, 3) for r in range(7)]
    assert codec.opened[0].closed

def test_read_row_blocks_give_same_result():
    img = make_image(5, 7, 2, dtype=np.uint16)
    one = _svc(InMemoryCodec(images={"x": img})).read_image("x", "uint16")
    codec = InMemoryCodec(images={"x": img})
    blk = _svc(codec, rows_per_block=3).read_image("x", "uint16")
    assert [r[2] for r in codec.reads] == [3, 3, 1, 3, 3, 1]
    for a, b in zip(one, blk):
        np.testing.assert_array_equal(a, b)

def test_read_missing_path_leaves_output_empty():
    svc = _svc()
    out = BufferSet()
    assert svc.image_to_buffer("missing.tif", out, ElementType.UINT8) is False
    assert len(out) == 0 and out.dimensions is None
    assert svc.last_error.operation is Operation.READ
    assert svc.last_error.kind == "open_failed"
    with pytest.raises(OpenFailed):
        svc.read_image("missing.tif", ElementType.UINT8)

def test_read_failure_releases_and_closes():
    codec = InMemoryCodec(images={"img.tif": make_image(4, 3, 2)}, fail_read_at=(2, 1))
    with pytest.raises(TransferFailed):
        _svc(codec).read_image("img.tif", ElementType.UINT8)
    assert codec.arena.live == 0
    assert codec.opened[0].closed

def test_read_unsupported_type_fails_before_open():
    codec = InMemoryCodec(images={"img.tif": make_image()})
    with pytest.raises(UnsupportedElementType):
        _svc(codec).read_image("img.tif", ElementType.UINT32)
    assert codec.opened == []

def test_image_to_buffer_overwrites_prior_content():
    codec = InMemoryCodec(images={"img.tif": make_image(4, 3, 2)})
    out = BufferSet.from_arrays([np.zeros(1)], [1, 1, 1], "float64")
    assert _svc(codec).image_to_buffer("img.tif", out, "uint8")
    assert out.dimensions == (4, 3, 2)
    assert out.element_type is ElementType.UINT8

def test_init_library_flag():
    codec = InMemoryCodec(images={"img.tif": make_image()})
    svc = _svc(codec)
    svc.read_image("img.tif", "uint8")
    assert codec.init_calls == 0
    svc.read_image("img.tif", "uint8", init_library=True)
    assert codec.init_calls == 1
    _svc(codec, init_library=True).read_image("img.tif", "uint8")
    assert codec.init_calls == 2


# ---------- escritura ----------
def test_write_then_read_ramp():
    codec = InMemoryCodec()
    svc = _svc(codec)
    ramp = make_ramp(4, 3, 2)
    assert svc.buffer_to_image(ramp, [4, 3, 2], "out.tif")
    bs = svc.read_image("out.tif", ElementType.UINT8)
    for a, b in zip(ramp, bs):
        np.testing.assert_array_equal(a, b)
    assert codec.created[0].closed

@pytest.mark.parametrize("dims", [[4, 3], [0, 3, 2], [4, 0, 2], [4, 3, 0]])
def test_write_invalid_dimensions_no_io(dims):
    codec = InMemoryCodec()
    svc = _svc(codec)
    assert svc.buffer_to_image(make_ramp(), dims, "out.tif") is False
    assert svc.last_error.kind == "invalid_dimensions"
    assert codec.created == [] and codec.init_calls == 0
    with pytest.raises(InvalidDimensions):
        svc.write_image(make_ramp(), dims, "out.tif", init_library=True)
    assert codec.init_calls == 0

def test_write_buffer_mismatch():
    svc = _svc()
    with pytest.raises(BufferMismatch):
        svc.write_image(make_ramp(4, 3, 1), [4, 3, 2], "out.tif")
    with pytest.raises(BufferMismatch):
        svc.write_image(make_ramp(4, 2, 2), [4, 3, 2], "out.tif")
    with pytest.raises(BufferMismatch):
        svc.write_image(make_ramp(4, 3, 2), [4, 3, 2], "out.tif", element_type="float32")

def test_write_unknown_driver_create_failed():
    codec = InMemoryCodec()
    svc = _svc(codec)
    assert svc.buffer_to_image(make_bufferset(), [4, 3, 2], "out.png", driver="NOPE") is False
    assert svc.last_error.kind == "create_failed"
    with pytest.raises(CreateFailed):
        svc.write_image(make_bufferset(), [4, 3, 2], "out.png", driver="NOPE")

def test_write_unsupported_element_type():
    svc = _svc()
    with pytest.raises(UnsupportedElementType):
        svc.write_image(make_ramp(dtype=np.uint32), [4, 3, 2], "out.tif")

def test_write_row_failure_is_fatal_by_default():
    codec = InMemoryCodec(fail_write_at=(1, 2))
    with pytest.raises(TransferFailed):
        _svc(codec).write_image(make_bufferset(), [4, 3, 2], "out.tif")
    assert codec.created[0].closed
    # se aborta en la primera falla
    assert codec.writes[-1] == (1, 2, 1)

def test_write_row_failure_best_effort():
    codec = InMemoryCodec(fail_write_at=(1, 2))
    out = _svc(codec, check_row_writes=False).write_image(make_bufferset(), [4, 3, 2], "out.tif")
    assert str(out) == "out.tif"
    assert len(codec.writes) == 6

def test_write_close_failure():
    codec = InMemoryCodec(fail_close=True)
    svc = _svc(codec)
    assert svc.buffer_to_image(make_bufferset(), [4, 3, 2], "out.tif") is False
    assert svc.last_error.kind == "transfer_failed"

def test_write_row_blocks():
    codec = InMemoryCodec()
    _svc(codec, rows_per_block=2).write_image(make_bufferset(), [4, 3, 2], "out.tif")
    assert codec.writes == [(1, 0, 2), (1, 2, 1), (2, 0, 2), (2, 2, 1)]
    np.testing.assert_array_equal(codec.images["out.tif"], make_image(4, 3, 2))

def test_write_uses_default_driver_from_settings():
    codec = InMemoryCodec(drivers={"ENVI"})
    assert _svc(codec, default_driver="ENVI").buffer_to_image(make_bufferset(), [4, 3, 2], "out.img")


# ---------- limpieza ----------
def test_cleanup_twice_is_safe():
    codec = InMemoryCodec(images={"img.tif": make_image()})
    svc = _svc(codec)
    bs = svc.read_image("img.tif", "uint8")
    assert svc.clean_buffer(bs)
    assert bs.slots == [None, None] and codec.arena.live == 0
    assert svc.clean_buffer(bs)
    assert bs.is_empty()

def test_cleanup_caller_buffers_only_drops_slots():
    bs = make_bufferset()
    arrays = list(bs)
    assert _svc().cleanup(bs)
    assert bs.slots == [None, None]
    assert arrays[0].size == 12

def test_cleanup_foreign_arena_reports_failure():
    svc = _svc()
    foreign = BufferArena("otro").allocate(12, ElementType.UINT8)
    bs = BufferSet(slots=[foreign])
    with pytest.raises(ArenaMismatch):
        svc.cleanup(bs)
    assert svc.clean_buffer(bs) is False
    assert svc.last_error.operation is Operation.CLEANUP

def test_map_element_type_passthrough():
    assert RasterBufferTransfer.map_element_type("cfloat32") is CodecType.CFLOAT32
    assert RasterBufferTransfer.map_element_type("int64") is CodecType.UNKNOWN

@pytest.mark.parametrize("dims", [[4.9, 3, 2], ["a", 3, 2]])
def test_write_non_integral_dimensions_reports_failure(dims):
    codec = InMemoryCodec()
    svc = _svc(codec)
    assert svc.buffer_to_image(make_ramp(), dims, "out.tif") is False
    assert svc.last_error.kind == "invalid_dimensions"
    assert codec.created == []


# ---------- soporte del backend ----------
def test_read_type_unsupported_by_backend_fails_before_open():
    codec = InMemoryCodec(images={"img.tif": make_image()}, unsupported={CodecType.CINT16})
    svc = _svc(codec)
    out = BufferSet()
    assert svc.image_to_buffer("img.tif", out, ElementType.CUINT16) is False
    assert svc.last_error.kind == "unsupported_element_type"
    assert codec.opened == [] and codec.allocations == 0
    assert len(out) == 0

def test_write_type_unsupported_by_backend_fails_before_create():
    codec = InMemoryCodec(unsupported={CodecType.FLOAT64})
    with pytest.raises(UnsupportedElementType):
        _svc(codec).write_image(make_ramp(dtype=np.float64), [4, 3, 2], "out.tif")
    assert codec.created == []

def test_write_close_failure_is_fatal_even_best_effort():
    codec = InMemoryCodec(fail_close=True)
    svc = _svc(codec, check_row_writes=False)
    assert svc.buffer_to_image(make_bufferset(), [4, 3, 2], "out.tif") is False
    assert svc.last_error.kind == "transfer_failed"
