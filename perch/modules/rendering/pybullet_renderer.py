"""
#WHERE
    Selected by EnvConfig(renderer="pybullet"); used by the environment and
    every cost-evaluation worker that holds a copy.

#WHAT
    PyBullet depth renderer — builds the hypothesised scene from primitive
    or mesh collision shapes (Factory pattern) in a DIRECT client and reads
    back the linearised depth buffer.

#INPUT
    Model library, object placements, 4x4 camera pose (optical frame).

#OUTPUT
    (img_height, img_width) uint16 depth image in mm, NO_RETURN on background.
"""

import logging
import os
from typing import List, Sequence, Tuple

import numpy as np

from perch.modules.object_models import ObjectModel
from perch.modules.state_space import ObjectState
from perch.shared.constants import DEPTH_SCALE, NO_RETURN
from perch.shared.errors import RenderFailure

log = logging.getLogger(__name__)


class ShapeFactory:
    @staticmethod
    def create(model: ObjectModel, client: int) -> Tuple[int, int]:
        creators = {
            "box": ShapeFactory._create_box,
            "cylinder": ShapeFactory._create_cylinder,
            "mesh": ShapeFactory._create_mesh,
        }
        creator = creators.get(model.shape)
        if not creator:
            raise ValueError(f"Unknown shape: {model.shape}")
        return creator(model, client)

    @staticmethod
    def _create_box(model: ObjectModel, client: int) -> Tuple[int, int]:
        import pybullet as p
        half = list(model.half_extents)
        collision = p.createCollisionShape(p.GEOM_BOX, halfExtents=half, physicsClientId=client)
        visual = p.createVisualShape(p.GEOM_BOX, halfExtents=half, rgbaColor=list(model.color), physicsClientId=client)
        return collision, visual

    @staticmethod
    def _create_cylinder(model: ObjectModel, client: int) -> Tuple[int, int]:
        import pybullet as p
        radius, height = model.size
        collision = p.createCollisionShape(p.GEOM_CYLINDER, radius=radius, height=height, physicsClientId=client)
        visual = p.createVisualShape(p.GEOM_CYLINDER, radius=radius, length=height,
                                     rgbaColor=list(model.color), physicsClientId=client)
        return collision, visual

    @staticmethod
    def _create_mesh(model: ObjectModel, client: int) -> Tuple[int, int]:
        import pybullet as p
        if not os.path.exists(model.mesh_path or ""):
            raise ValueError(f"Mesh not found: {model.mesh_path}")
        collision = p.createCollisionShape(p.GEOM_MESH, fileName=model.mesh_path, physicsClientId=client)
        visual = p.createVisualShape(p.GEOM_MESH, fileName=model.mesh_path, physicsClientId=client)
        return collision, visual


class PyBulletDepthRenderer:
    """One DIRECT client per process, connected lazily on first render."""

    def __init__(self, width: int, height: int, fov: float, near: float, far: float,
                 table_height: float = 0.0):
        self.width = width
        self.height = height
        self.fov = fov
        self.near = near
        self.far = far
        self.table_height = table_height
        self._client = None
        self._pid = None

    def __getstate__(self):
        state = self.__dict__.copy()
        state.update(_client=None, _pid=None)
        return state

    def _connect(self) -> int:
        import pybullet as p
        if self._client is not None and self._pid == os.getpid():
            return self._client
        client = p.connect(p.DIRECT)
        if client < 0:
            raise RenderFailure("PyBullet connection failed")
        self._client, self._pid = client, os.getpid()
        log.info("PyBullet renderer connected (pid=%d, %dx%d)", self._pid, self.width, self.height)
        return client

    def _build_scene(self, models: Sequence[ObjectModel], objects: Sequence[ObjectState]) -> List[int]:
        import pybullet as p
        bodies = []
        for obj in objects:
            model = models[obj.model_id]
            collision, visual = ShapeFactory.create(model, self._client)
            pose = obj.cont_pose
            # pybullet primitives are centred on their origin
            position = [pose.x, pose.y, self.table_height + model.half_extents[2]]
            orientation = p.getQuaternionFromEuler([0.0, 0.0, pose.theta])
            bodies.append(p.createMultiBody(
                baseMass=0,
                baseCollisionShapeIndex=collision,
                baseVisualShapeIndex=visual,
                basePosition=position,
                baseOrientation=orientation,
                physicsClientId=self._client,
            ))
        return bodies

    def render(self, models: Sequence[ObjectModel], objects: Sequence[ObjectState],
               camera_pose: np.ndarray) -> np.ndarray:
        try:
            import pybullet as p
            self._connect()
            p.resetSimulation(physicsClientId=self._client)
            self._build_scene(models, objects)

            pose = np.asarray(camera_pose, dtype=np.float64)
            eye = pose[:3, 3]
            target = eye + pose[:3, 2]
            up = -pose[:3, 1]
            view_matrix = p.computeViewMatrix(eye.tolist(), target.tolist(), up.tolist(),
                                              physicsClientId=self._client)
            proj_matrix = p.computeProjectionMatrixFOV(
                fov=self.fov, aspect=self.width / self.height,
                nearVal=self.near, farVal=self.far, physicsClientId=self._client,
            )
            _, _, _, depth_buffer, _ = p.getCameraImage(
                width=self.width, height=self.height,
                viewMatrix=view_matrix, projectionMatrix=proj_matrix,
                renderer=p.ER_TINY_RENDERER, physicsClientId=self._client,
            )
        except RenderFailure:
            raise
        except Exception as exc:
            raise RenderFailure(f"PyBullet render failed: {exc}") from exc

        # Depth linearization: z = far*near / (far - (far-near)*depth_buffer)
        depth_buffer = np.asarray(depth_buffer, dtype=np.float64).reshape((self.height, self.width))
        depth_linear = self.far * self.near / (self.far - (self.far - self.near) * depth_buffer)
        image = np.full((self.height, self.width), NO_RETURN, dtype=np.uint16)
        hit = depth_buffer < 1.0 - 1e-7
        mm = np.round(depth_linear[hit] * DEPTH_SCALE)
        image[hit] = np.minimum(mm, NO_RETURN - 1).astype(np.uint16)
        return image

    def close(self) -> None:
        import pybullet as p
        if self._client is not None and self._pid == os.getpid():
            p.disconnect(physicsClientId=self._client)
            log.info("PyBullet renderer disconnected")
        self._client = None
        self._pid = None

