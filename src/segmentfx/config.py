from dataclasses import dataclass

# Vertex ceiling compiled into the GPU evaluator (see shaders.POLYGON_FIELD_GLSL)
GPU_MAX_POLYGON_POINTS = 4096


@dataclass
class AppConfig:
    # --- Debugging ---
    debug: bool = False  # Log profiler stats after segmentation and per second

    # --- Logging ---
    log_level: str = "INFO"  # Minimum log level to output
    log_file: str | None = None  # Redirect logs to a file instead of the console

    # --- Canvas ---
    canvas_width: int = 900  # Pixel frame shared by normalization and evaluation
    canvas_height: int = 1200
    window_scale: float = 0.5  # Viewer window size relative to the canvas

    # --- Mask proposals ---
    sam_model: str = "mobile_sam.pt"  # SAM weights loaded through ultralytics
    device: str | None = None  # Inference device; None picks cuda when available
    imgsz: int = 1024  # Model input size
    grid_step: int = 96  # Pixels between prompt points
    mask_threshold: float = 0.7  # Probability cutoff for the binary mask

    # --- Dedup ---
    iou_threshold: float = 0.9  # Reject masks overlapping a kept one at least this much
    min_area_px: int = 0  # Reject masks with fewer foreground pixels

    # --- Contours ---
    offset_px: int = 8  # Outward dilation radius before tracing the outline
    close_px: int = 0  # Morphological close radius to fill small gaps; 0 to disable
    simplify_tolerance: float = 1.5  # approxPolyDP epsilon in pixels
    max_vertices: int = 1024  # Vertex budget per polygon

    # --- Viewer ---
    fill_color: tuple = (0.1, 0.6, 1.0, 0.25)  # Tint inside the hovered segment
    edge_color: tuple = (1.0, 1.0, 1.0, 1.0)  # Glow color along its outline
    edge_width: float = 6.0  # Glow falloff in pixels

    def validate(self) -> "AppConfig":
        """Raise ValueError when a setting breaks a contract between components."""
        if self.canvas_width <= 0 or self.canvas_height <= 0:
            raise ValueError(
                f"Canvas size must be positive, got {self.canvas_width}x{self.canvas_height}"
            )
        if self.grid_step <= 0:
            raise ValueError(f"grid_step must be positive, got {self.grid_step}")
        if not 0.0 < self.mask_threshold <= 1.0:
            raise ValueError(f"mask_threshold must be in (0, 1], got {self.mask_threshold}")
        if not 0.0 < self.iou_threshold <= 1.0:
            raise ValueError(f"iou_threshold must be in (0, 1], got {self.iou_threshold}")
        if self.min_area_px < 0 or self.offset_px < 0 or self.close_px < 0:
            raise ValueError("min_area_px, offset_px and close_px must be >= 0")
        if not 3 <= self.max_vertices <= GPU_MAX_POLYGON_POINTS:
            raise ValueError(
                f"max_vertices must be in [3, {GPU_MAX_POLYGON_POINTS}], got {self.max_vertices}"
            )
        return self
