import imageio.v3 as iio
import numpy as np
import pytest

from rgbdvo.direct import main, read_associations, select_semidense, select_sparse
from rgbdvo.features import KeyPoint
from rgbdvo.photometric import project_2d_to_3d, project_3d_to_2d

K = np.array([[518.0, 0.0, 325.5], [0.0, 519.0, 253.5], [0.0, 0.0, 1.0]])


def test_read_associations(tmp_path):
    path = tmp_path / "associate.txt"
    path.write_text("1.0 rgb/a.png 1.1 depth/a.png\n2.0 rgb/b.png 2.1 depth/b.png\n3.0 rgb/c.png\n")
    assert read_associations(path) == [
        ("1.0", "rgb/a.png", "1.1", "depth/a.png"),
        ("2.0", "rgb/b.png", "2.1", "depth/b.png"),
    ]


def test_read_associations_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_associations(tmp_path / "nothing.txt")


def test_select_sparse_valid_keypoint():
    gray = np.zeros((60, 60), np.uint8)
    depth = np.zeros((60, 60), np.uint16)
    gray[26, 30] = 77
    depth[26, 30] = 2000
    result = select_sparse(gray, depth, [KeyPoint(pt=(30.4, 25.6))], K, 1000.0)
    assert len(result) == 1
    expected = project_2d_to_3d(30, 25, 2000, 518.0, 519.0, 325.5, 253.5, 1000.0)
    np.testing.assert_allclose(result[0].pos_world, expected)
    assert result[0].pos_world[2] == pytest.approx(2.0)
    assert result[0].grayscale == 77.0


def test_select_sparse_skips_border_and_missing_depth():
    gray = np.full((60, 60), 10, np.uint8)
    depth = np.full((60, 60), 500, np.uint16)
    depth[30, 30] = 0
    keypoints = [(5.0, 30.0), (30.0, 45.0), (30.0, 30.0)]
    assert select_sparse(gray, depth, keypoints, K, 1000.0) == []


def _step_image():
    gray = np.zeros((40, 40), np.uint8)
    gray[:, 20:] = 100
    depth = np.full((40, 40), 1000, np.uint16)
    return gray, depth


def test_select_semidense_uniform_is_empty():
    gray = np.full((40, 40), 50, np.uint8)
    depth = np.full((40, 40), 1000, np.uint16)
    assert select_semidense(gray, depth, K, 1000.0, 50) == []


def test_select_semidense_step_edge():
    gray, depth = _step_image()
    result = select_semidense(gray, depth, K, 1000.0, 50)
    assert len(result) == 40
    columns = [round(project_3d_to_2d(*m.pos_world, 518.0, 519.0, 325.5, 253.5)[0]) for m in result]
    assert columns[:20] == [19] * 20
    assert columns[20:] == [20] * 20
    assert all(m.pos_world[2] == pytest.approx(1.0) for m in result)
    assert [m.grayscale for m in result[:20]] == [0.0] * 20
    assert [m.grayscale for m in result[20:]] == [100.0] * 20


def test_select_semidense_skips_zero_depth():
    gray, depth = _step_image()
    depth[:, 20] = 0
    result = select_semidense(gray, depth, K, 1000.0, 50)
    assert len(result) == 20
    assert all(m.grayscale == 0.0 for m in result)


def test_main_without_association_file(tmp_path):
    assert main([str(tmp_path)]) == 1


def test_main_requires_dataset():
    with pytest.raises(SystemExit):
        main([])


def test_main_runs_semidense(tmp_path, capsys):
    rng = np.random.default_rng(7)
    cells = rng.integers(0, 256, (6, 6))
    gray = np.kron(cells, np.ones((8, 8))).astype(np.uint8)
    color = np.stack([gray] * 3, axis=2)
    depth = np.full(gray.shape, 1000, np.uint16)
    iio.imwrite(tmp_path / "rgb.png", color)
    iio.imwrite(tmp_path / "depth.png", depth)
    (tmp_path / "associate.txt").write_text(
        "1.0 rgb.png 1.0 depth.png\n2.0 rgb.png 2.0 depth.png\n"
    )
    out_dir = tmp_path / "out"
    code = main([str(tmp_path), "--method", "semidense", "--frames", "2", "--save", str(out_dir)])
    output = capsys.readouterr().out
    assert code == 0
    assert "add total" in output
    assert "Tcw=" in output
    assert (out_dir / "result_0001.png").exists()
    saved = iio.imread(out_dir / "result_0001.png")
    assert saved.shape[:2] == (96, 48)