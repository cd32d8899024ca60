import hashlib

import numpy as np

ID_LENGTH = 12


def mask_id(mask: np.ndarray, length: int = ID_LENGTH) -> str:
    """
    Content address of a binary mask.

    SHA-1 over the mask's raw 0/1 byte buffer, hex encoded and truncated.
    Masks with identical bits always share an id.
    """
    bits = np.ascontiguousarray(np.asarray(mask) != 0, dtype=np.uint8)
    return hashlib.sha1(bits.tobytes()).hexdigest()[:length]
