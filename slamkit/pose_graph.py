"""Pose-graph optimisation on SE(3) with Lie-algebra errors.

Graphs are read and written in the g2o text format (``VERTEX_SE3:QUAT`` and
``EDGE_SE3:QUAT`` lines). The error of an edge between poses Ti and Tj with
measurement Tij is ``log(Tij^-1 Ti^-1 Tj)``; poses are updated by left
multiplication with ``exp(dx)``.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamkit.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
DEFAULT_OUTPUT = "result_lie.g2o"

_DIM = 6
_UPPER = np.triu_indices(_DIM)
_TAU = 1e-5
_MAX_TRIALS = 10


@dataclass
class Vertex:
    """A pose node of the graph."""

    id: int
    pose: SE3
    fixed: bool = False


@dataclass
class Edge:
    """A relative-pose measurement between two vertices."""

    id: int
    source: int
    target: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(_DIM))


def _read_pose(values):
    tx, ty, tz, qx, qy, qz, qw = (float(v) for v in values)
    return SE3.from_quaternion((qw, qx, qy, qz), (tx, ty, tz))


def _pose_fields(pose):
    w, x, y, z = pose.quaternion()
    return [repr(float(v)) for v in (*pose.translation, x, y, z, w)]


@dataclass
class PoseGraph:
    """Vertices keyed by id, and the edges between them."""

    vertices: dict = field(default_factory=dict)
    edges: list = field(default_factory=list)

    @classmethod
    def read(cls, stream):
        """Build a graph from g2o text lines; vertex 0 is held fixed."""
        graph = cls()
        for number, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields or fields[0] not in (VERTEX_TAG, EDGE_TAG):
                continue
            try:
                if fields[0] == VERTEX_TAG:
                    graph._read_vertex(fields)
                else:
                    graph._read_edge(fields)
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from None
        return graph

    def _read_vertex(self, fields):
        if len(fields) < 9:
            raise ValueError("vertex needs an id and 7 pose values")
        index = int(fields[1])
        if index in self.vertices:
            raise ValueError(f"duplicate vertex {index}")
        self.vertices[index] = Vertex(index, _read_pose(fields[2:9]), fixed=index == 0)

    def _read_edge(self, fields):
        if len(fields) < 10:
            raise ValueError("edge needs two vertex ids and 7 pose values")
        source, target = int(fields[1]), int(fields[2])
        for vid in (source, target):
            if vid not in self.vertices:
                raise ValueError(f"edge refers to unknown vertex {vid}")
        information = np.eye(_DIM)
        values = [float(v) for v in fields[10 : 10 + len(_UPPER[0])]]
        for (i, j), value in zip(zip(*_UPPER), values):
            information[i, j] = value
            information[j, i] = value
        self.edges.append(
            Edge(len(self.edges), source, target, _read_pose(fields[3:10]), information)
        )

    def write(self, stream):
        """Write the graph as g2o text lines."""
        for vertex in self.vertices.values():
            stream.write(" ".join([VERTEX_TAG, str(vertex.id), *_pose_fields(vertex.pose)]) + "\n")
        for edge in self.edges:
            info = [repr(float(v)) for v in edge.information[_UPPER]]
            parts = [EDGE_TAG, str(edge.source), str(edge.target), *_pose_fields(edge.measurement), *info]
            stream.write(" ".join(parts) + "\n")

    def edge_error(self, edge):
        """The 6-vector error of an edge at the current vertex poses."""
        pose_i = self.vertices[edge.source].pose
        pose_j = self.vertices[edge.target].pose
        return (edge.measurement.inverse() @ pose_i.inverse() @ pose_j).log()

    def total_error(self):
        """Sum over the edges of the information-weighted squared error."""
        total = 0.0
        for edge in self.edges:
            error = self.edge_error(edge)
            total += float(error @ edge.information @ error)
        return total

    def _linearize(self, index, size):
        rows, cols, data = [], [], []
        gradient = np.zeros(size)
        offsets = np.arange(_DIM)
        for edge in self.edges:
            error = self.edge_error(edge)
            adj = self.vertices[edge.target].pose.inverse().adjoint()
            blocks = [
                (index[vid], jac)
                for vid, jac in ((edge.source, -adj), (edge.target, adj))
                if vid in index
            ]
            omega = edge.information
            for row, jac_a in blocks:
                weighted = jac_a.T @ omega
                gradient[row : row + _DIM] -= weighted @ error
                for col, jac_b in blocks:
                    rows.append(np.repeat(offsets + row, _DIM))
                    cols.append(np.tile(offsets + col, _DIM))
                    data.append((weighted @ jac_b).ravel())
        if rows:
            hessian = coo_matrix(
                (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
                shape=(size, size),
            ).tocsc()
        else:
            hessian = coo_matrix((size, size)).tocsc()
        return hessian, gradient

    def _apply(self, free, index, dx):
        for vid in free:
            start = index[vid]
            vertex = self.vertices[vid]
            vertex.pose = SE3.exp(dx[start : start + _DIM]) @ vertex.pose

    def optimize(self, iterations=30):
        """Levenberg-Marquardt over the free vertices; returns the error after each step."""
        if iterations < 0:
            raise ValueError("iterations must not be negative")
        free = [vid for vid, vertex in self.vertices.items() if not vertex.fixed]
        index = {vid: k * _DIM for k, vid in enumerate(free)}
        history = []
        if not free or not self.edges:
            return history
        size = _DIM * len(free)
        eye = identity(size, format="csc")
        chi2 = self.total_error()
        damping = None
        nu = 2.0
        for _ in range(iterations):
            hessian, gradient = self._linearize(index, size)
            if damping is None:
                peak = float(hessian.diagonal().max())
                damping = _TAU * peak if peak > 0 else _TAU
            saved = {vid: self.vertices[vid].pose for vid in free}
            accepted = False
            for _ in range(_MAX_TRIALS):
                dx = np.asarray(spsolve((hessian + damping * eye).tocsc(), gradient)).ravel()
                if np.all(np.isfinite(dx)):
                    self._apply(free, index, dx)
                    new_chi2 = self.total_error()
                    scale = float(dx @ (damping * dx + gradient)) + 1e-3
                    rho = (chi2 - new_chi2) / scale
                    if np.isfinite(new_chi2) and rho > 0:
                        damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                        nu = 2.0
                        chi2 = new_chi2
                        accepted = True
                        break
                    for vid, pose in saved.items():
                        self.vertices[vid].pose = pose
                damping *= nu
                nu *= 2.0
            if not accepted:
                break
            history.append(chi2)
        return history


def main(argv=None):
    parser = argparse.ArgumentParser(description="Optimise a pose graph stored in g2o format.")
    parser.add_argument("graph", help="input .g2o file, e.g. sphere.g2o")
    parser.add_argument("-o", "--output", default=DEFAULT_OUTPUT)
    parser.add_argument("--iterations", type=int, default=30)
    args = parser.parse_args(argv)

    try:
        with open(args.graph, encoding="utf-8") as handle:
            graph = PoseGraph.read(handle)
    except OSError:
        print(f"file {args.graph} does not exist.")
        return 1
    except ValueError as exc:
        print(f"{args.graph}: {exc}", file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("optimizing ...")
    for iteration, chi2 in enumerate(graph.optimize(args.iterations)):
        print(f"iteration= {iteration}\t chi2= {chi2:.6f}")
    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as out:
        graph.write(out)
    return 0


if __name__ == "__main__":
    sys.exit(main())