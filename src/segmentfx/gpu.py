from __future__ import annotations
import cv2
import moderngl
import numpy as np

from . import shaders as S
from .config import AppConfig
from .logging import get_logger
from .profiler import get_profiler
from .registry import Segment


def make_tex(ctx, size, comps, data=None, dtype="f1", nearest=False):
    tex = ctx.texture(size, comps, data, dtype=dtype)
    filt = moderngl.NEAREST if nearest else moderngl.LINEAR
    tex.filter = (filt, filt)
    tex.repeat_x = False
    tex.repeat_y = False
    return tex


def fullscreen_quad(ctx):
    v = np.array([-1, -1, 1, -1, -1, 1, 1, 1], dtype="f4")
    return ctx.buffer(v.tobytes())


def set_uniform(prog, name, value):
    # the GLSL compiler strips uniforms an effect does not read
    uniform = prog.get(name, None)
    if uniform is not None:
        uniform.value = value


class SegmentTextureCache:
    """Point textures keyed by segment id, uploaded once per registry."""

    def __init__(self, ctx: moderngl.Context):
        self.ctx = ctx
        self._textures = {}

    def get(self, segment: Segment):
        tex = self._textures.get(segment.id)
        if tex is None:
            tex = make_tex(
                self.ctx,
                (segment.texel_width, segment.texel_height),
                4,
                segment.raster.tobytes(),
                nearest=True,
            )
            self._textures[segment.id] = tex
        return tex

    def clear(self):
        for tex in self._textures.values():
            tex.release()
        self._textures.clear()

    def __len__(self):
        return len(self._textures)


def bind_segment(prog, texture, segment: Segment, resolution, location: int = 1):
    """Point a program built from POLYGON_FIELD_GLSL at one segment."""
    if tuple(segment.canvas_size) != tuple(int(v) for v in resolution):
        raise ValueError(
            f"Segment {segment.id} was encoded for {segment.canvas_size}, not {tuple(resolution)}"
        )
    texture.use(location=location)
    set_uniform(prog, "uPointTexture", location)
    set_uniform(prog, "uPointTextureDim", (segment.texel_width, segment.texel_height))
    set_uniform(prog, "uPointCount", segment.vertex_count)
    set_uniform(prog, "uPointAABB", tuple(segment.aabb))
    set_uniform(prog, "uResolution", tuple(float(v) for v in resolution))


class FieldRenderer:
    """Evaluates a segment's polygon field for every canvas pixel on the GPU."""

    def __init__(self, ctx: moderngl.Context, cfg: AppConfig):
        self.ctx = ctx
        self.cfg = cfg
        self.profiler = get_profiler()
        self.size = (cfg.canvas_width, cfg.canvas_height)

        self.prog = ctx.program(vertex_shader=S.VS, fragment_shader=S.FS_POLYGON_FIELD)
        self.vbo = fullscreen_quad(ctx)
        self.vao = ctx.simple_vertex_array(self.prog, self.vbo, "in_vert")

        self.field_tex = make_tex(ctx, self.size, 4, dtype="f4", nearest=True)
        self.fbo = ctx.framebuffer([self.field_tex])
        self.textures = SegmentTextureCache(ctx)

    def evaluate(self, segment: Segment) -> np.ndarray:
        """
        Returns a (canvas_height, canvas_width, 2) float32 array holding the
        signed distance and the inside flag, row 0 at the top of the canvas.
        """
        w, h = self.size
        with self.profiler.record("gpu_field"):
            self.fbo.use()
            self.ctx.viewport = (0, 0, w, h)
            bind_segment(self.prog, self.textures.get(segment), segment, self.size)
            self.vao.render(moderngl.TRIANGLE_STRIP)
            raw = self.fbo.read(components=4, dtype="f4")

        field = np.frombuffer(raw, dtype=np.float32).reshape(h, w, 4)
        return np.ascontiguousarray(np.flipud(field)[..., :2])


class SegmentRenderer:
    """Draws the loaded image with the selected segment highlighted."""

    def __init__(self, ctx: moderngl.Context, cfg: AppConfig, image: np.ndarray | None):
        self.ctx = ctx
        self.cfg = cfg
        self.logger = get_logger(__name__)
        self.size = (cfg.canvas_width, cfg.canvas_height)

        self.prog = ctx.program(
            vertex_shader=S.VS, fragment_shader=S.FS_SEGMENT_HIGHLIGHT
        )
        self.vbo = fullscreen_quad(ctx)
        self.vao = ctx.simple_vertex_array(self.prog, self.vbo, "in_vert")
        self.textures = SegmentTextureCache(ctx)

        if image is None:
            rgba = np.zeros((self.size[1], self.size[0], 4), dtype=np.uint8)
        else:
            rgba = cv2.cvtColor(image, cv2.COLOR_RGB2RGBA)
        # flipped vertically for GL UV convention
        self.image_tex = make_tex(ctx, self.size, 4, cv2.flip(rgba, 0).tobytes())

        set_uniform(self.prog, "fill_color", tuple(cfg.fill_color))
        set_uniform(self.prog, "edge_color", tuple(cfg.edge_color))
        set_uniform(self.prog, "edge_width", float(cfg.edge_width))
        set_uniform(self.prog, "uResolution", tuple(float(v) for v in self.size))
        self.segment = None

    def set_segment(self, segment: Segment | None):
        if segment is not None and (self.segment is None or segment.id != self.segment.id):
            self.logger.debug(f"Selected segment {segment.id} ({segment.vertex_count} vertices)")
        self.segment = segment

    def reset(self):
        """Forget cached point textures, e.g. after the registry was replaced."""
        self.textures.clear()
        self.segment = None

    def render(self, viewport):
        self.ctx.viewport = viewport
        self.image_tex.use(location=0)
        set_uniform(self.prog, "photo", 0)
        if self.segment is None:
            set_uniform(self.prog, "has_segment", 0)
        else:
            set_uniform(self.prog, "has_segment", 1)
            bind_segment(
                self.prog, self.textures.get(self.segment), self.segment, self.size
            )
        self.vao.render(moderngl.TRIANGLE_STRIP)
