"""Fixed-weight CAPTCHA classifier for the VTOP login form.

The login CAPTCHA is a 200x40 JPEG with six coloured glyphs on a grey,
noisy background. Glyph pixels are strongly saturated while the noise is
not, so each pixel is reduced to its saturation, the image is cut into six
fixed character cells (alternating vertical offset), each cell is binarized
against its own mean and flattened, and a pretrained linear layer + softmax
picks one label per cell.

The weights are static data shipped as a JSON asset::

    {"weights": [[...32 floats...] x 528], "biases": [...32 floats...]}

There is no training path: the model is only ever loaded and applied.
"""

import base64
import binascii
import io
import json
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from src.vtop.config import get_config
from src.vtop.errors import CaptchaDecodeError, CaptchaDimensionError, CaptchaModelError
from src.vtop.logging import get_logger

logger = get_logger(__name__)

WIDTH = 200
HEIGHT = 40
NUM_CHARACTERS = 6
LABELS = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"

CELL_WIDTH = 24
CELL_HEIGHT = 22
CELL_FEATURES = CELL_WIDTH * CELL_HEIGHT


def cell_bounds(index: int) -> tuple[int, int, int, int]:
    """(x1, y1, x2, y2) of character cell index; odd cells sit 5px lower."""
    x1 = (index + 1) * 25 + 2
    x2 = (index + 2) * 25 + 1
    y1 = 7 + 5 * (index % 2) + 1
    y2 = 35 - 5 * ((index + 1) % 2)
    return x1, y1, x2, y2


class CaptchaModel:
    """Pretrained linear layer: CELL_FEATURES inputs -> one score per label."""

    def __init__(self, weights: np.ndarray, biases: np.ndarray) -> None:
        weights = np.asarray(weights, dtype=np.float64)
        biases = np.asarray(biases, dtype=np.float64).reshape(-1)
        expected = (CELL_FEATURES, len(LABELS))
        if weights.shape != expected:
            raise CaptchaModelError(
                f"CAPTCHA weights have shape {weights.shape}, expected {expected}"
            )
        if biases.shape != (len(LABELS),):
            raise CaptchaModelError(
                f"CAPTCHA biases have shape {biases.shape}, expected ({len(LABELS)},)"
            )
        self.weights = weights
        self.biases = biases

    @classmethod
    def from_file(cls, path: str | Path) -> "CaptchaModel":
        """Load weights/biases from the JSON asset."""
        path = Path(path)
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise CaptchaModelError(f"CAPTCHA weights file not found: {path}") from e
        except (OSError, ValueError) as e:
            raise CaptchaModelError(f"Unreadable CAPTCHA weights file {path}: {e}") from e
        try:
            model = cls(np.array(payload["weights"]), np.array(payload["biases"]))
        except (KeyError, TypeError) as e:
            raise CaptchaModelError(
                f"CAPTCHA weights file {path} needs 'weights' and 'biases' arrays"
            ) from e
        logger.info("captcha_model_loaded", path=str(path))
        return model

    def predict(self, features: np.ndarray) -> np.ndarray:
        """Softmax probabilities for a batch of flattened, binarized cells."""
        logits = features @ self.weights + self.biases
        # Shifting by the row max leaves softmax unchanged and avoids overflow
        logits = logits - logits.max(axis=-1, keepdims=True)
        exp = np.exp(logits)
        return exp / exp.sum(axis=-1, keepdims=True)


def decode_image(data_uri: str) -> np.ndarray:
    """Decode a data URI (or bare base64) JPEG into an HxWx3 uint8 array.

    Raises:
        CaptchaDecodeError: Payload is not base64 or not an image.
        CaptchaDimensionError: Image is not WIDTH x HEIGHT.
    """
    payload = data_uri.split(",", 1)[1] if "," in data_uri else data_uri
    try:
        raw = base64.b64decode(payload.strip(), validate=False)
        with Image.open(io.BytesIO(raw)) as image:
            image.load()
            rgb = image.convert("RGB")
    except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as e:
        raise CaptchaDecodeError(f"Cannot decode CAPTCHA image: {e}") from e

    if rgb.size != (WIDTH, HEIGHT):
        raise CaptchaDimensionError(
            f"Unexpected captcha dimensions {rgb.width}x{rgb.height}"
        )
    return np.asarray(rgb, dtype=np.int64)


def saturation(pixels: np.ndarray) -> np.ndarray:
    """Per-pixel round((max-min)*255/max), 0 where max is 0 (half-up rounding)."""
    high = pixels.max(axis=2)
    low = pixels.min(axis=2)
    scaled = np.divide(
        (high - low) * 255.0,
        high,
        out=np.zeros(high.shape, dtype=np.float64),
        where=high != 0,
    )
    return np.floor(scaled + 0.5)


def cell_features(saturated: np.ndarray) -> np.ndarray:
    """Binarize and flatten the six character cells into a (6, 528) matrix."""
    rows = []
    for index in range(NUM_CHARACTERS):
        x1, y1, x2, y2 = cell_bounds(index)
        cell = saturated[y1:y2, x1:x2]
        rows.append((cell > cell.mean()).astype(np.float64).reshape(-1))
    return np.vstack(rows)


class CaptchaSolver:
    """Turns a base64 CAPTCHA image into a 6-character guess."""

    def __init__(
        self,
        model: CaptchaModel | None = None,
        weights_path: str | Path | None = None,
    ) -> None:
        """Initialize the solver.

        Args:
            model: Preloaded classifier. If omitted it is loaded lazily from
                weights_path (default: config.captcha_weights_path).
            weights_path: JSON asset with the classifier weights.
        """
        self._model = model
        self._weights_path = weights_path

    @property
    def model(self) -> CaptchaModel:
        if self._model is None:
            path = self._weights_path or get_config().captcha_weights_path
            self._model = CaptchaModel.from_file(path)
        return self._model

    def solve(self, data_uri: str) -> str:
        """Return the six predicted characters, all drawn from LABELS."""
        saturated = saturation(decode_image(data_uri))
        probabilities = self.model.predict(cell_features(saturated))
        guess = "".join(LABELS[i] for i in probabilities.argmax(axis=1))
        logger.debug("captcha_solved", guess=guess)
        return guess


_default_solver: CaptchaSolver | None = None


def solve_captcha_from_base64(data_uri: str) -> str:
    """Solve a CAPTCHA with the default (config-driven) solver."""
    global _default_solver
    if _default_solver is None:
        _default_solver = CaptchaSolver()
    return _default_solver.solve(data_uri)
