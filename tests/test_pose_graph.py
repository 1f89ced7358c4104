import io

import numpy as np
import pytest

from slamkit.lie import SE3, SO3
from slamkit.pose_graph import Edge, PoseGraph, Vertex, main

IDENTITY_INFO = " ".join(str(v) for v in np.eye(6)[np.triu_indices(6)])


def _text(info=IDENTITY_INFO):
    return (
        "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\n"
        "VERTEX_SE3:QUAT 1 1 0 0 0 0 0 1\n"
        "FIX 0\n"
        f"EDGE_SE3:QUAT 0 1 1 0 0 0 0 0 1 {info}\n"
    )


def _chain(perturb=False):
    poses = [
        SE3(),
        SE3(SO3.exp([0.0, 0.0, 0.3]), [1.0, 0.0, 0.0]),
        SE3(SO3.exp([0.0, 0.1, 0.6]), [2.0, 0.5, 0.0]),
    ]
    vertices = {i: Vertex(i, pose, fixed=i == 0) for i, pose in enumerate(poses)}
    edges = [
        Edge(k, i, j, poses[i].inverse() @ poses[j])
        for k, (i, j) in enumerate([(0, 1), (1, 2), (0, 2)])
    ]
    graph = PoseGraph(vertices, edges)
    if perturb:
        graph.vertices[1].pose = SE3.exp([0.05, -0.03, 0.02, 0.01, 0.02, -0.02]) @ poses[1]
        graph.vertices[2].pose = SE3.exp([-0.04, 0.05, 0.01, -0.02, 0.01, 0.03]) @ poses[2]
    return graph, poses


def test_read_counts_and_fixes_vertex_zero():
    graph = PoseGraph.read(io.StringIO(_text()))
    assert sorted(graph.vertices) == [0, 1]
    assert len(graph.edges) == 1
    assert graph.vertices[0].fixed
    assert not graph.vertices[1].fixed
    assert np.allclose(graph.vertices[1].pose.translation, [1, 0, 0])


def test_read_information_is_symmetric_and_scaled():
    info = " ".join(str(v) for v in (10 * np.eye(6))[np.triu_indices(6)])
    graph = PoseGraph.read(io.StringIO(_text(info)))
    assert np.allclose(graph.edges[0].information, 10 * np.eye(6))


def test_read_off_diagonal_information_mirrored():
    values = [0.0] * 21
    values[1] = 0.5
    graph = PoseGraph.read(io.StringIO(_text(" ".join(map(str, values)))))
    info = graph.edges[0].information
    assert info[0, 1] == 0.5
    assert info[1, 0] == 0.5


def test_edge_error_zero_for_consistent_graph():
    graph = PoseGraph.read(io.StringIO(_text()))
    assert np.allclose(graph.edge_error(graph.edges[0]), 0.0)
    assert graph.total_error() == pytest.approx(0.0, abs=1e-12)


def test_read_unknown_vertex_raises():
    text = "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nEDGE_SE3:QUAT 0 5 1 0 0 0 0 0 1\n"
    with pytest.raises(ValueError):
        PoseGraph.read(io.StringIO(text))


def test_read_duplicate_vertex_raises():
    text = "VERTEX_SE3:QUAT 0 0 0 0 0 0 0 1\nVERTEX_SE3:QUAT 0 1 0 0 0 0 0 1\n"
    with pytest.raises(ValueError):
        PoseGraph.read(io.StringIO(text))


def test_write_read_round_trip():
    graph, _ = _chain(perturb=True)
    graph.edges[1].information = 3 * np.eye(6)
    buffer = io.StringIO()
    graph.write(buffer)
    lines = buffer.getvalue().splitlines()
    assert lines[0].startswith("VERTEX_SE3:QUAT 0 ")
    assert lines[3].startswith("EDGE_SE3:QUAT 0 1 ")
    back = PoseGraph.read(io.StringIO(buffer.getvalue()))
    assert sorted(back.vertices) == sorted(graph.vertices)
    for vid, vertex in graph.vertices.items():
        assert np.allclose(back.vertices[vid].pose.matrix(), vertex.pose.matrix())
    for original, copy in zip(graph.edges, back.edges):
        assert (copy.source, copy.target) == (original.source, original.target)
        assert np.allclose(copy.measurement.matrix(), original.measurement.matrix())
        assert np.allclose(copy.information, original.information)


def test_optimize_reduces_error():
    graph, poses = _chain(perturb=True)
    before = graph.total_error()
    history = graph.optimize(30)
    assert history
    assert history[-1] < before
    assert graph.total_error() < 1e-8
    assert all(a >= b for a, b in zip(history, history[1:]))
    for vid, pose in enumerate(poses):
        assert np.allclose(graph.vertices[vid].pose.matrix(), pose.matrix(), atol=1e-4)


def test_optimize_keeps_fixed_vertex():
    graph, poses = _chain(perturb=True)
    graph.optimize(10)
    assert np.allclose(graph.vertices[0].pose.matrix(), poses[0].matrix())


def test_optimize_all_fixed_is_noop():
    graph, _ = _chain(perturb=True)
    for vertex in graph.vertices.values():
        vertex.fixed = True
    before = graph.total_error()
    assert graph.optimize(5) == []
    assert graph.total_error() == pytest.approx(before)


def test_optimize_negative_iterations():
    graph, _ = _chain()
    with pytest.raises(ValueError):
        graph.optimize(-1)


def test_main_missing_file(tmp_path, capsys):
    path = tmp_path / "absent.g2o"
    assert main([str(path)]) == 1
    assert "does not exist" in capsys.readouterr().out


def test_main_writes_result(tmp_path, capsys):
    graph, _ = _chain(perturb=True)
    source = tmp_path / "graph.g2o"
    with open(source, "w", encoding="utf-8") as handle:
        graph.write(handle)
    output = tmp_path / "result.g2o"
    assert main([str(source), "--output", str(output)]) == 0
    out = capsys.readouterr().out
    assert "read total 3 vertices, 3 edges." in out
    with open(output, encoding="utf-8") as handle:
        result = PoseGraph.read(handle)
    assert len(result.vertices) == 3
    assert result.total_error() < graph.total_error()