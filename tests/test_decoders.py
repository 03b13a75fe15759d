import gzip

import numpy as np
import pytest

from fcsync.basecalls import TileUnit, open_decoder, registry
from fcsync.basecalls.base import decode_bcl_bytes, read_filter_file
from fcsync.basecalls.columnar import parse_cbcl_header
from fcsync.errors import CorruptHeaderError, MissingCycleError, UnsupportedFormatError
from fcsync.rundir import read_run_directory
from rundir_factory import (
    cbcl_file,
    filter_file,
    lane_dir,
    make_run,
    write_bgzf_lane,
    write_cbcl_lane,
    write_per_tile,
)

READS = ["ACGTACGTACG", "CCGTNAGTACG", "GGGTTTTTACG"]


def _decoder(run):
    return open_decoder(read_run_directory(run))


def _bases(calls) -> str:
    return calls.bases.tobytes().decode("ascii")


def test_registry_detection_order():
    assert registry.names() == ["columnar", "compressed", "raw"]


@pytest.mark.parametrize(
    "encoding, expected",
    [("raw", "raw"), ("gz", "compressed"), ("bgzf", "compressed"), ("cbcl", "columnar")],
)
def test_detects_encoding(tmp_path, encoding, expected):
    tile = "11101" if encoding == "bgzf" else "1101"
    run = make_run(tmp_path / "run", {1: {tile: READS}}, encoding=encoding)

    assert _decoder(run).name == expected


def test_no_base_calls_is_unsupported(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, cycles=1)
    (lane_dir(run, 1) / "C1.1" / "s_1_1101.bcl").unlink()

    with pytest.raises(UnsupportedFormatError):
        _decoder(run)


def test_decode_bcl_bytes():
    calls = decode_bcl_bytes(bytes([0, (30 << 2) | 0, (20 << 2) | 3, (2 << 2) | 1]))

    assert _bases(calls) == "NATC"
    assert calls.qualities.tolist() == [0, 30, 20, 2]
    assert calls.passed_filter.all()
    assert list(calls)[1] == ("A", 30, True)


@pytest.mark.parametrize("encoding", ["raw", "gz"])
def test_decodes_per_tile_files(tmp_path, encoding):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, encoding=encoding)
    decoder = _decoder(run)
    [tile] = decoder.tiles(1)

    calls = decoder.decode(tile, 5)

    assert tile == TileUnit(lane=1, tile="1101", first_cycle=1, last_cycle=11)
    assert decoder.length(tile) == 3
    assert _bases(calls) == "ANT"
    assert calls.qualities.tolist() == [30, 0, 30]
    assert len(decoder.decode(tile, 5, limit=2)) == 2


def test_tiles_follow_run_info_order(tmp_path):
    run = make_run(
        tmp_path / "run",
        {1: {"1101": READS, "1102": READS, "1103": READS}},
        tiles={1: ["1103", "1101"]},
    )

    assert [tile.tile for tile in _decoder(run).tiles(1)] == ["1103", "1101", "1102"]


def test_per_tile_filter_file(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}})
    write_per_tile(run, 1, "1101", READS, 11, passed=[True, False, True])
    decoder = _decoder(run)

    calls = decoder.decode(decoder.tiles(1)[0], 1)

    assert calls.passed_filter.tolist() == [True, False, True]


def test_missing_cycle_file(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}})
    (lane_dir(run, 1) / "C6.1" / "s_1_1101.bcl").unlink()
    decoder = _decoder(run)

    with pytest.raises(MissingCycleError) as info:
        decoder.decode(decoder.tiles(1)[0], 6)
    assert info.value.cycle == 6


def test_truncated_bcl_file(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}})
    path = lane_dir(run, 1) / "C2.1" / "s_1_1101.bcl"
    path.write_bytes(path.read_bytes()[:5])
    decoder = _decoder(run)

    with pytest.raises(CorruptHeaderError):
        decoder.decode(decoder.tiles(1)[0], 2)


def test_damaged_gzip_file(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, encoding="gz")
    (lane_dir(run, 1) / "C2.1" / "s_1_1101.bcl.gz").write_bytes(b"not gzip at all")
    decoder = _decoder(run)

    with pytest.raises(CorruptHeaderError):
        decoder.decode(decoder.tiles(1)[0], 2)


def test_bgzf_lane_uses_bci_tile_order(tmp_path):
    tiles = {"11102": ["CCCCCCCCCCC"], "11101": READS}
    run = make_run(tmp_path / "run", {1: tiles}, encoding="bgzf")
    decoder = _decoder(run)

    units = decoder.tiles(1)

    assert [unit.tile for unit in units] == ["11102", "11101"]
    assert decoder.length(units[1]) == 3
    assert _bases(decoder.decode(units[0], 1)) == "C"
    assert _bases(decoder.decode(units[1], 5)) == "ANT"
    assert _bases(decoder.decode(units[1], 5, limit=1)) == "A"


def test_bgzf_lane_without_bci_is_one_tile(tmp_path):
    run = make_run(tmp_path / "run", {1: {"11101": READS}}, encoding="bgzf")
    write_bgzf_lane(run, 1, {"11101": READS}, 11, with_bci=False)
    (lane_dir(run, 1) / "s_1.bci").unlink()
    decoder = _decoder(run)

    [unit] = decoder.tiles(1)

    assert unit.tile == "all"
    assert decoder.length(unit) == 3
    assert _bases(decoder.decode(unit, 1)) == "ACG"


def test_bgzf_lane_filter_is_offset_by_tile(tmp_path):
    tiles = {"11101": READS[:1], "11102": READS[1:]}
    run = make_run(tmp_path / "run", {1: tiles}, encoding="bgzf")
    write_bgzf_lane(run, 1, tiles, 11, passed=[True, False, True])
    decoder = _decoder(run)

    calls = decoder.decode(decoder.tiles(1)[1], 1)

    assert calls.passed_filter.tolist() == [False, True]


def test_bgzf_tile_beyond_records(tmp_path):
    run = make_run(tmp_path / "run", {1: {"11101": READS}}, encoding="bgzf")
    (lane_dir(run, 1) / "0001.bcl.bgzf").write_bytes(gzip.compress(b"\x01\x00\x00\x00\x01"))
    decoder = _decoder(run)

    with pytest.raises(CorruptHeaderError):
        decoder.decode(decoder.tiles(1)[0], 1)


def test_decodes_cbcl(tmp_path):
    tiles = {"1101": READS, "1102": ["TTTTTTTTTTT", "GGGGGGGGGGG"]}
    run = make_run(tmp_path / "run", {1: tiles}, encoding="cbcl")
    decoder = _decoder(run)
    units = decoder.tiles(1)

    assert [unit.tile for unit in units] == ["1101", "1102"]
    assert decoder.length(units[0]) == 3
    first = decoder.decode(units[0], 5)
    assert _bases(first) == "ANT"
    assert first.qualities.tolist() == [36, 0, 36]
    assert _bases(decoder.decode(units[1], 1)) == "TG"
    assert len(decoder.decode(units[0], 1, limit=2)) == 2


def test_cbcl_filter_file(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, encoding="cbcl")
    write_cbcl_lane(run, 1, {"1101": READS}, 11, passed={"1101": [False, True, True]})
    decoder = _decoder(run)

    calls = decoder.decode(decoder.tiles(1)[0], 1)

    assert calls.passed_filter.tolist() == [False, True, True]


def test_cbcl_without_non_pf_reads_ignores_filter(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, encoding="cbcl")
    write_cbcl_lane(
        run, 1, {"1101": READS}, 11, non_pf_excluded=True, passed={"1101": [False] * 3}
    )
    decoder = _decoder(run)

    assert decoder.decode(decoder.tiles(1)[0], 1).passed_filter.all()


def test_cbcl_header_offsets_accumulate():
    data = cbcl_file({"1101": "ACGT", "1102": "ACGTACGT"})

    header = parse_cbcl_header(data, "test.cbcl")

    first, second = header.tiles
    assert first.offset == header.header_size
    assert second.offset == header.header_size + first.compressed_size
    assert header.bins[3] == 36
    assert not header.non_pf_excluded


def test_cbcl_unsupported_version():
    with pytest.raises(UnsupportedFormatError):
        parse_cbcl_header(cbcl_file({"1101": "ACGT"}, version=2), "test.cbcl")


def test_cbcl_truncated_header():
    with pytest.raises(CorruptHeaderError):
        parse_cbcl_header(cbcl_file({"1101": "ACGT"})[:20], "test.cbcl")


def test_missing_filter_file_means_all_passed(tmp_path):
    assert read_filter_file(tmp_path / "s_1_1101.filter", 3) is None


def test_filter_file_too_short(tmp_path):
    path = tmp_path / "s_1_1101.filter"
    path.write_bytes(filter_file([True]))

    with pytest.raises(CorruptHeaderError):
        read_filter_file(path, 3)


def test_decoding_is_deterministic(tmp_path):
    run = make_run(tmp_path / "run", {1: {"1101": READS}}, encoding="cbcl")
    decoder = _decoder(run)
    tile = decoder.tiles(1)[0]

    first, second = decoder.decode(tile, 3), decoder.decode(tile, 3)

    assert np.array_equal(first.bases, second.bases)
    assert np.array_equal(first.qualities, second.qualities)
