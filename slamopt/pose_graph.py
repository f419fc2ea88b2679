"""Pose graph optimisation over SE3 poses with Lie-algebra error terms.

Graphs are read from and written to the g2o text format using
``VERTEX_SE3:QUAT`` and ``EDGE_SE3:QUAT`` records. Poses are stored as
translation followed by a quaternion ordered (x, y, z, w). Edge
information matrices are written as their upper triangle, row by row.
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Sequence, TextIO, Tuple, TypeVar

import numpy as np
from scipy.sparse import coo_matrix, identity
from scipy.sparse.linalg import spsolve

from slamopt.se3 import SE3, jr_inv

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
RESULT_FILE = "result_lie.g2o"

_T = TypeVar("_T")
_ROW_OFFSETS = np.repeat(np.arange(6), 6)
_COL_OFFSETS = np.tile(np.arange(6), 6)


def _swap_information_blocks(information: Sequence[Sequence[float]]) -> np.ndarray:
    m = np.asarray(information, dtype=float)
    if m.shape != (6, 6):
        raise ValueError(f"information matrix must be 6x6, got shape {m.shape}")
    out = np.eye(6)
    out[0:3, 0:3] = m[3:6, 3:6]
    out[3:6, 3:6] = m[0:3, 0:3]
    out[0:3, 3:6] = m[0:3, 3:6]
    out[3:6, 0:3] = m[3:6, 0:3]
    return out


def g2o_to_gtsam_information(information: Sequence[Sequence[float]]) -> np.ndarray:
    """Swap the translation and rotation diagonal blocks (translation-first to rotation-first)."""
    return _swap_information_blocks(information)


def gtsam_to_g2o_information(information: Sequence[Sequence[float]]) -> np.ndarray:
    """Swap the rotation and translation diagonal blocks (rotation-first to translation-first)."""
    return _swap_information_blocks(information)


@dataclass
class PoseVertex:
    """A pose in the graph; fixed poses are not changed by optimisation."""

    id: int
    pose: SE3
    fixed: bool = False


@dataclass
class PoseEdge:
    """A relative pose measurement between two vertices."""

    id: int
    from_id: int
    to_id: int
    measurement: SE3
    information: np.ndarray = field(default_factory=lambda: np.eye(6))


def _take(tokens: Iterator[str], convert: Callable[[str], _T], what: str) -> _T:
    token = next(tokens, None)
    if token is None:
        raise ValueError(f"unexpected end of input while reading {what}")
    try:
        return convert(token)
    except ValueError:
        raise ValueError(f"invalid {what}: {token!r}") from None


def _read_pose(tokens: Iterator[str]) -> SE3:
    data = [_take(tokens, float, "pose value") for _ in range(7)]
    return SE3.from_quaternion((data[6], data[3], data[4], data[5]), data[0:3])


def _fmt(value: float) -> str:
    return format(float(value), "g")


def _pose_fields(pose: SE3) -> List[str]:
    w, x, y, z = pose.unit_quaternion()
    return [_fmt(v) for v in (*pose.translation, x, y, z, w)]


def _axis_rotation(axis: int, angle: float) -> SE3:
    xi = np.zeros(6)
    xi[3 + axis] = angle
    return SE3.exp(xi)


def _oplus(pose: SE3, update: np.ndarray) -> SE3:
    """Left-multiply the pose by an increment (translation, per-axis rotations)."""
    rotation = _axis_rotation(0, update[3]) @ _axis_rotation(1, update[4]) @ _axis_rotation(2, update[5])
    increment = SE3(rotation.unit_quaternion(), update[:3])
    return increment @ pose


@dataclass
class PoseGraph:
    """Vertices keyed by id and the edges between them."""

    vertices: Dict[int, PoseVertex] = field(default_factory=dict)
    edges: List[PoseEdge] = field(default_factory=list)

    @classmethod
    def read(cls, stream: TextIO) -> "PoseGraph":
        """Read vertices and edges from g2o text; vertex 0 is held fixed."""
        graph = cls()
        tokens = iter(stream.read().split())
        for tag in tokens:
            if tag == VERTEX_TAG:
                index = _take(tokens, int, "vertex id")
                if index in graph.vertices:
                    raise ValueError(f"duplicate vertex id {index}")
                pose = _read_pose(tokens)
                graph.vertices[index] = PoseVertex(index, pose, fixed=(index == 0))
            elif tag == EDGE_TAG:
                id1 = _take(tokens, int, "edge vertex id")
                id2 = _take(tokens, int, "edge vertex id")
                for vid in (id1, id2):
                    if vid not in graph.vertices:
                        raise ValueError(f"edge refers to unknown vertex {vid}")
                measurement = _read_pose(tokens)
                information = np.eye(6)
                done = False
                for i in range(6):
                    for j in range(i, 6):
                        token = next(tokens, None)
                        if token is None:
                            done = True
                            break
                        try:
                            value = float(token)
                        except ValueError:
                            raise ValueError(f"invalid information value: {token!r}") from None
                        information[i, j] = value
                        information[j, i] = value
                    if done:
                        break
                graph.edges.append(
                    PoseEdge(len(graph.edges), id1, id2, measurement, information))
        return graph

    def write(self, stream: TextIO) -> None:
        """Write the graph as g2o text."""
        for vertex in self.vertices.values():
            fields = [VERTEX_TAG, str(vertex.id), *_pose_fields(vertex.pose)]
            stream.write(" ".join(fields) + "\n")
        for edge in self.edges:
            info = edge.information
            upper = [_fmt(info[i, j]) for i in range(6) for j in range(i, 6)]
            fields = [EDGE_TAG, str(edge.from_id), str(edge.to_id),
                      *_pose_fields(edge.measurement), *upper]
            stream.write(" ".join(fields) + " \n")

    def _pose(self, vid: int) -> SE3:
        try:
            return self.vertices[vid].pose
        except KeyError:
            raise ValueError(f"edge refers to unknown vertex {vid}") from None

    def edge_error(self, edge: PoseEdge) -> np.ndarray:
        """Error log(Z^-1 * T1^-1 * T2) as a 6-vector (translation, rotation)."""
        v1 = self._pose(edge.from_id)
        v2 = self._pose(edge.to_id)
        return (edge.measurement.inverse() @ v1.inverse() @ v2).log()

    def total_error(self) -> float:
        """Sum over edges of e^T * information * e."""
        total = 0.0
        for edge in self.edges:
            e = self.edge_error(edge)
            total += float(e @ edge.information @ e)
        return total

    def _linearize(self, edge: PoseEdge) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        error = self.edge_error(edge)
        v2 = self._pose(edge.to_id)
        j = jr_inv(SE3.exp(error))
        adj = v2.inverse().adjoint()
        return error, -j @ adj, j @ adj

    def _build_system(self, index: Dict[int, int]):
        size = 6 * len(index)
        rows: List[np.ndarray] = []
        cols: List[np.ndarray] = []
        vals: List[np.ndarray] = []
        b = np.zeros(size)
        for edge in self.edges:
            error, ji, jj = self._linearize(edge)
            omega = edge.information
            active = [(index[vid], jac) for vid, jac in ((edge.from_id, ji), (edge.to_id, jj))
                      if vid in index]
            for a, ja in active:
                b[6 * a:6 * a + 6] -= ja.T @ omega @ error
                for c, jc in active:
                    rows.append(6 * a + _ROW_OFFSETS)
                    cols.append(6 * c + _COL_OFFSETS)
                    vals.append((ja.T @ omega @ jc).ravel())
        if rows:
            h = coo_matrix((np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))),
                           shape=(size, size)).tocsc()
        else:
            h = coo_matrix((size, size)).tocsc()
        return h, b

    def optimize(self, iterations: int = 30, verbose: bool = False) -> float:
        """Run Levenberg-Marquardt on the free vertices; return the final total error."""
        free = [vid for vid, v in self.vertices.items() if not v.fixed]
        index = {vid: k for k, vid in enumerate(free)}
        if not free or not self.edges:
            return self.total_error()

        size = 6 * len(free)
        damping: Optional[float] = None
        growth = 2.0
        for iteration in range(iterations):
            chi2 = self.total_error()
            h, b = self._build_system(index)
            if damping is None:
                diag_max = float(np.max(np.abs(h.diagonal()))) if size else 0.0
                damping = 1e-5 * (diag_max if diag_max > 0.0 else 1.0)

            accepted = False
            new_chi2 = chi2
            for _ in range(10):
                dx = spsolve((h + damping * identity(size, format="csc")).tocsc(), b)
                dx = np.atleast_1d(np.asarray(dx, dtype=float))
                if not np.all(np.isfinite(dx)):
                    damping *= growth
                    growth *= 2.0
                    continue
                backup = {vid: self.vertices[vid].pose for vid in free}
                for vid, k in index.items():
                    vertex = self.vertices[vid]
                    vertex.pose = _oplus(vertex.pose, dx[6 * k:6 * k + 6])
                new_chi2 = self.total_error()
                scale = float(dx @ (damping * dx + b)) + 1e-3
                rho = (chi2 - new_chi2) / scale
                if rho > 0.0 and math.isfinite(new_chi2):
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    growth = 2.0
                    accepted = True
                    break
                for vid, pose in backup.items():
                    self.vertices[vid].pose = pose
                new_chi2 = chi2
                damping *= growth
                growth *= 2.0

            if verbose:
                print(f"iteration= {iteration}\t chi2= {new_chi2:.6f}\t lambda= {damping:.6f}")
            if not accepted:
                break
        return self.total_error()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Optimise a pose graph file and save the result to result_lie.g2o."""
    argv = list(sys.argv if argv is None else argv)
    if len(argv) != 2:
        print("Usage: pose_graph_g2o_SE3_lie sphere.g2o")
        return 1
    path = argv[1]
    try:
        with open(path, "r") as handle:
            graph = PoseGraph.read(handle)
    except OSError:
        print(f"file {path} does not exist.")
        return 1
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")
    print("prepare optimizing ...")
    print("calling optimizing ...")
    graph.optimize(30, verbose=True)
    print("saving optimization results ...")
    with open(RESULT_FILE, "w") as out:
        graph.write(out)
    return 0