"""
OCR Service — extracts text from receipt images using Tesseract.

Every call gets its own worker (a single-thread executor that runs the
blocking pytesseract calls) and the worker is shut down on every exit path,
including cancellation.  Multi-frame images (TIFF, HEIF sequences) are read
frame by frame, which is what drives the optional progress callback.
"""
import asyncio
import io
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Callable, Optional

import numpy as np
import pytesseract
from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageSequence
from pillow_heif import register_heif_opener

import config
from models.schemas import OcrResult
from services.errors import OcrError

logger = logging.getLogger("receiptlens.ocr")

# HEIC/HEIF support (iPhone photos)
register_heif_opener()

ProgressCallback = Callable[[float], None]


def _default_executor() -> Executor:
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix="tesseract")


@asynccontextmanager
async def ocr_worker(factory: Callable[[], Executor] = _default_executor):
    """Acquire a worker for one OCR call and always release it."""
    executor = factory()
    try:
        yield executor
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


# Frames narrower than this are upscaled before recognition.
MIN_OCR_WIDTH = 800
# Horizontal bands scanned for white-on-black print (e.g. Costco totals).
BAND_COUNT = 40
DARK_BAND_MEAN = 80


def invert_dark_bands(gray: np.ndarray) -> np.ndarray:
    """Return a copy of a grayscale array with every dark horizontal band inverted."""
    step = max(1, gray.shape[0] // BAND_COUNT)
    band_of_row = np.arange(gray.shape[0]) // step
    band_means = np.bincount(band_of_row, weights=gray.mean(axis=1)) / np.bincount(band_of_row)
    dark_rows = band_means[band_of_row] < DARK_BAND_MEAN
    out = gray.copy()
    out[dark_rows] = 255 - out[dark_rows]
    return out


def load_frames(image_bytes: bytes) -> list[Image.Image]:
    """
    Decode every frame and get it ready for Tesseract: EXIF orientation applied,
    grayscale, at least MIN_OCR_WIDTH wide, dark bands flipped, then contrast
    boosted and sharpened.
    """
    frames = []
    with Image.open(io.BytesIO(image_bytes)) as image:
        for frame in ImageSequence.Iterator(image):
            gray = ImageOps.exif_transpose(frame.copy()).convert("L")
            if gray.width < MIN_OCR_WIDTH:
                height = round(gray.height * MIN_OCR_WIDTH / gray.width)
                gray = gray.resize((MIN_OCR_WIDTH, height), Image.LANCZOS)
            gray = Image.fromarray(invert_dark_bands(np.asarray(gray)))
            frames.append(ImageEnhance.Contrast(gray).enhance(2.0).filter(ImageFilter.SHARPEN))
    return frames


def recognize_frame(frame: Image.Image, tesseract_config: str) -> tuple[list[str], list[float]]:
    """
    Run Tesseract on one frame.  Returns (lines, word confidences); words are
    grouped back into lines by Tesseract's block/paragraph/line numbering.
    """
    data = pytesseract.image_to_data(
        frame, config=tesseract_config, output_type=pytesseract.Output.DICT
    )
    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []
    for i, word in enumerate(data["text"]):
        word = (word or "").strip()
        if not word:
            continue
        key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
        lines.setdefault(key, []).append(word)
        conf = float(data["conf"][i])
        if conf >= 0:   # -1 marks non-word boxes
            confidences.append(conf)
    return [" ".join(words) for words in lines.values()], confidences


def mean_confidence(confidences: list[float]) -> float:
    if not confidences:
        return 0.0
    return min(100.0, max(0.0, sum(confidences) / len(confidences)))


class TesseractOcr:
    """OCR adapter: image bytes in, ``OcrResult`` out."""

    def __init__(
        self,
        tesseract_config: str = config.TESSERACT_CONFIG,
        executor_factory: Callable[[], Executor] = _default_executor,
    ):
        self.tesseract_config = tesseract_config
        self._executor_factory = executor_factory

    async def extract(
        self,
        image_bytes: bytes,
        on_progress: Optional[ProgressCallback] = None,
    ) -> OcrResult:
        loop = asyncio.get_running_loop()
        async with ocr_worker(self._executor_factory) as worker:
            try:
                frames = await loop.run_in_executor(worker, load_frames, image_bytes)
            except Exception as e:
                raise OcrError(f"Cannot open image ({type(e).__name__}): {e}") from e
            if not frames:
                raise OcrError("Image contains no frames")

            lines: list[str] = []
            confidences: list[float] = []
            try:
                # Progress only covers recognition, not decode/teardown.
                if on_progress:
                    on_progress(0.0)
                for index, frame in enumerate(frames):
                    try:
                        frame_lines, frame_conf = await loop.run_in_executor(
                            worker, recognize_frame, frame, self.tesseract_config
                        )
                    except pytesseract.TesseractNotFoundError as e:
                        raise OcrError("tesseract binary not found in PATH") from e
                    except Exception as e:
                        raise OcrError(f"OCR failed ({type(e).__name__}): {e}") from e
                    lines.extend(frame_lines)
                    confidences.extend(frame_conf)
                    if on_progress:
                        on_progress((index + 1) / len(frames))
            finally:
                for frame in frames:
                    frame.close()

        text = "\n".join(lines).strip()
        confidence = mean_confidence(confidences)
        logger.debug("OCR read %d frame(s), %d chars, confidence %.1f",
                     len(frames), len(text), confidence)
        return OcrResult(text=text, confidence=confidence)
