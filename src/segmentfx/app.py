from __future__ import annotations
import argparse
import shutil
import sys

import time
import glfw, moderngl

from .codec import load_contour_map, save_contour_map
from .config import AppConfig
from .gpu import SegmentRenderer
from .logging import get_logger, setup_logging
from .pipeline import fit_to_canvas
from .profiler import get_profiler
from .registry import SegmentRegistry
from .segmentation import UltralyticsSAMModel
from .session import SegmentationSession
from .utils import load_image_rgb, window_to_canvas


def build_parser():
    p = argparse.ArgumentParser(description="Segment FX")
    p.add_argument("image", nargs="?", default=None, help="Photo to segment and view.")
    p.add_argument(
        "--contours",
        type=str,
        default=None,
        help="Load segments from a contour JSON file instead of running the model.",
    )
    p.add_argument(
        "--save-contours",
        type=str,
        default=None,
        help="Write the segment polygons to a JSON file.",
    )
    p.add_argument("--model", type=str, default=None, help="SAM weights. Default: from config.")
    p.add_argument("--device", type=str, default=None, help="Inference device. Default: auto.")
    p.add_argument(
        "--grid-step", type=int, default=None, help="Pixels between prompt points."
    )
    p.add_argument(
        "--iou-threshold",
        type=float,
        default=None,
        help="Drop masks overlapping a kept mask by this IoU or more.",
    )
    p.add_argument(
        "--min-area", type=int, default=None, help="Drop masks smaller than this (px)."
    )
    p.add_argument(
        "--mask-threshold",
        type=float,
        default=None,
        help="Probability cutoff for binary masks.",
    )
    p.add_argument(
        "--offset", type=int, default=None, help="Outward outline offset in pixels."
    )
    p.add_argument(
        "--tolerance",
        type=float,
        default=None,
        help="Polygon simplification tolerance in pixels.",
    )
    p.add_argument(
        "--max-vertices", type=int, default=None, help="Vertex budget per polygon."
    )
    p.add_argument(
        "--no-window",
        action="store_true",
        help="Segment (and optionally save) without opening the viewer.",
    )
    p.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log to a file instead of the console.",
    )
    p.add_argument("--debug", action="store_true", help="Log profiler stats.")
    return p


def config_from_args(args) -> AppConfig:
    cfg = AppConfig()
    if args.model is not None:
        cfg.sam_model = args.model
    if args.device is not None:
        cfg.device = args.device
    if args.grid_step is not None:
        cfg.grid_step = args.grid_step
    if args.iou_threshold is not None:
        cfg.iou_threshold = args.iou_threshold
    if args.min_area is not None:
        cfg.min_area_px = args.min_area
    if args.mask_threshold is not None:
        cfg.mask_threshold = args.mask_threshold
    if args.offset is not None:
        cfg.offset_px = args.offset
    if args.tolerance is not None:
        cfg.simplify_tolerance = args.tolerance
    if args.max_vertices is not None:
        cfg.max_vertices = args.max_vertices
    if args.log_file is not None:
        cfg.log_file = args.log_file
    if args.debug:
        cfg.debug = True
    return cfg.validate()


def main(argv=None):
    p = build_parser()
    args = p.parse_args(argv)
    if args.image is None and args.contours is None:
        p.error("an image or --contours is required")

    try:
        cfg = config_from_args(args)
    except ValueError as e:
        p.error(str(e))

    # --- logging ---
    setup_logging(cfg.log_level, cfg.log_file)
    logger = get_logger(__name__)
    profiler = get_profiler()

    image = None
    if args.image is not None:
        image = fit_to_canvas(load_image_rgb(args.image), cfg)

    # --- segments ---
    session = None
    if args.contours is not None:
        registry = SegmentRegistry.from_contour_map(
            load_contour_map(args.contours), cfg.canvas_width, cfg.canvas_height
        )
        logger.info(f"Loaded {len(registry)} segments from {args.contours}")
    else:
        model = UltralyticsSAMModel(
            cfg.sam_model,
            device=cfg.device,
            imgsz=cfg.imgsz,
            mask_threshold=cfg.mask_threshold,
        )
        session = SegmentationSession(model, cfg)
        result = session.load_image(image).result()
        registry = result.registry
        logger.info(f"{len(registry)} segments, {result.stats.elapsed:.2f}s")

    if cfg.debug:
        profiler.log_stats()
    if args.save_contours is not None:
        save_contour_map(args.save_contours, registry.to_contour_map())

    if args.no_window:
        if session is not None:
            session.close()
        return 0

    if session is None:
        session = SegmentationSession(None, cfg)
        session.replace_registry(registry)

    try:
        run_viewer(cfg, image, session)
    finally:
        session.close()
    return 0


def run_viewer(cfg: AppConfig, image, session: SegmentationSession):
    logger = get_logger(__name__)

    # --- window / context ---
    if not glfw.init():
        raise RuntimeError("GLFW init failed")
    glfw.window_hint(glfw.CONTEXT_VERSION_MAJOR, 3)
    glfw.window_hint(glfw.CONTEXT_VERSION_MINOR, 3)
    glfw.window_hint(glfw.OPENGL_PROFILE, glfw.OPENGL_CORE_PROFILE)
    glfw.window_hint(glfw.OPENGL_FORWARD_COMPAT, True)

    win_w = max(1, int(cfg.canvas_width * cfg.window_scale))
    win_h = max(1, int(cfg.canvas_height * cfg.window_scale))
    win = glfw.create_window(win_w, win_h, "Segment FX", None, None)
    glfw.make_context_current(win)

    def _linux_gl_hint():
        if sys.platform.startswith("linux") and shutil.which("glxinfo") is None:
            return (
                "Linux OpenGL loaders not found.\n"
                "Install the dev libraries:\n"
                "  sudo apt install -y libgl1-mesa-dev libegl1-mesa-dev libglvnd-dev mesa-utils\n"
            )

    try:
        ctx = moderngl.create_context()
    except Exception:
        logger.error(_linux_gl_hint() or "Failed to create ModernGL context.")
        glfw.terminate()
        raise

    renderer = SegmentRenderer(ctx, cfg, image)
    registry = session.registry
    hover_id = None
    logger.info("Move the pointer over the photo to select a segment. ESC quit")

    profiler = get_profiler()
    prev_t = time.time()
    time_since_log = 0.0
    try:
        while not glfw.window_should_close(win):
            glfw.poll_events()
            if glfw.get_key(win, glfw.KEY_ESCAPE) == glfw.PRESS:
                break

            # a finished load swaps the registry; cached textures belong to the old one
            if session.registry is not registry:
                registry = session.registry
                renderer.reset()
                hover_id = None

            # --- hit test ---
            with profiler.record("hit_test"):
                fb_w, fb_h = glfw.get_framebuffer_size(win)
                cur_w, cur_h = glfw.get_window_size(win)
                cx, cy = glfw.get_cursor_pos(win)
                point = window_to_canvas(
                    cx, cy, cur_w, cur_h, cfg.canvas_width, cfg.canvas_height
                )
                seg_id = registry.find_containing_segment(point)
            if seg_id != hover_id:
                hover_id = seg_id
                logger.info(f"Hover segment: {seg_id}")
                renderer.set_segment(registry[seg_id] if seg_id is not None else None)

            # --- render ---
            with profiler.record("render"):
                ctx.screen.use()
                renderer.render((0, 0, fb_w, fb_h))

            now = time.time()
            time_since_log += now - prev_t
            prev_t = now
            if cfg.debug and time_since_log >= 1.0:
                profiler.log_stats()
                time_since_log = 0.0

            glfw.swap_buffers(win)
    finally:
        glfw.terminate()
