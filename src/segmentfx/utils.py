import cv2
import numpy as np


def load_image_rgb(path: str) -> np.ndarray:
    """Read an image file as an (H, W, 3) uint8 RGB array."""
    bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if bgr is None:
        raise FileNotFoundError(f"Could not read image: {path}")
    return cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)


def disk_mask(w: int, h: int, cx: float, cy: float, r: float) -> np.ndarray:
    """Binary 0/1 disk centred at pixel (cx, cy)."""
    ys, xs = np.mgrid[0:h, 0:w]
    return (((xs - cx) ** 2 + (ys - cy) ** 2) <= r * r).astype(np.uint8)


def rect_mask(w: int, h: int, x0: int, y0: int, x1: int, y1: int) -> np.ndarray:
    """Binary 0/1 rectangle covering columns x0..x1-1 and rows y0..y1-1."""
    m = np.zeros((h, w), dtype=np.uint8)
    m[y0:y1, x0:x1] = 1
    return m


def window_to_canvas(x: float, y: float, win_w: int, win_h: int, canvas_w: int, canvas_h: int):
    """Map a window-space pointer position onto canvas pixels."""
    return x / max(win_w, 1) * canvas_w, y / max(win_h, 1) * canvas_h
