#!/usr/bin/env python3
"""
Portfolio image optimizer
Builds resized WebP and progressive JPEG derivatives of the gallery images,
strips all embedded metadata and indexes the results in a JSON manifest.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from loguru import logger
from PIL import Image, ImageOps
from tqdm import tqdm


@dataclass(frozen=True)
class SizeTier:
    name: str
    width: int
    quality: int

    def __post_init__(self):
        if not self.name:
            raise ValueError("Size tier needs a name")
        if self.width <= 0:
            raise ValueError(f"Size tier '{self.name}': width must be positive, got {self.width}")
        if not 0 <= self.quality <= 100:
            raise ValueError(f"Size tier '{self.name}': quality must be 0-100, got {self.quality}")


DEFAULT_SIZES = [
    SizeTier('thumb', 400, 80),
    SizeTier('medium', 800, 82),
    SizeTier('large', 1200, 85),
    SizeTier('full', 2000, 88),
]

SUPPORTED_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.webp']

# Passed to every save() so the encoders never copy source metadata across
STRIP_METADATA = {'exif': b'', 'icc_profile': None, 'xmp': b''}

WHITE = (255, 255, 255)

HIGH_BIT_DEPTH_MODES = ('I', 'I;16', 'I;16L', 'I;16B', 'I;16N')


def sanitize_filename(filename: str) -> str:
    """Derive a lowercase, hyphenated, ASCII-only base name (extension dropped)."""
    name = Path(filename).stem.lower()
    name = re.sub(r'\s+', '-', name)
    name = re.sub(r'[^a-z0-9-]', '', name)
    name = re.sub(r'-+', '-', name)
    return name.strip('-')


def compute_target_width(tier_width: int, natural_width: int) -> int:
    """Width to render a tier at; sources are never upscaled."""
    return min(tier_width, natural_width)


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


@dataclass
class TierOutput:
    tier: str
    width: int
    height: int
    webp_path: Path
    jpeg_path: Path
    webp_bytes: int = 0
    jpeg_bytes: int = 0


@dataclass
class ProcessedImage:
    original: str
    sanitized: str
    width: int
    height: int
    outputs: List[TierOutput] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(o.webp_bytes + o.jpeg_bytes for o in self.outputs)


@dataclass
class BatchResult:
    processed: List[ProcessedImage] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    manifest_path: Optional[Path] = None

    @property
    def total_bytes(self) -> int:
        return sum(p.total_bytes for p in self.processed)


class ImageOptimizer:
    """Resizes and re-encodes a flat directory of images into size tiers"""

    def __init__(self, config_path: str = "optimize_config.yaml",
                 input_dir: Optional[str] = None,
                 output_dir: Optional[str] = None,
                 dry_run: bool = False):
        self.config = self._load_config(config_path)

        # Command line overrides win over the config file
        if input_dir:
            self.config["input_dir"] = str(input_dir)
        if output_dir:
            self.config["output_dir"] = str(output_dir)

        self.input_dir = Path(self.config["input_dir"])
        self.output_dir = Path(self.config["output_dir"])
        self.sizes = self._parse_sizes(self.config["sizes"])
        self.extensions = {
            ext.lower() if ext.startswith('.') else f".{ext.lower()}"
            for ext in self.config["extensions"]
        }
        self.exclude_substring = self.config["exclude_substring"]
        self.dry_run = dry_run

    def _load_config(self, config_path: str) -> dict:
        """Load configuration from YAML file, falling back to defaults per key"""
        config = self._default_config()
        if config_path and Path(config_path).exists():
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"Config file {config_path} must contain a mapping")
            config.update(loaded)
            logger.debug(f"Loaded config from {config_path}")
        return config

    def _default_config(self) -> dict:
        """Default configuration settings"""
        return {
            "input_dir": "portfolio",
            "output_dir": "portfolio/optimized",
            "sizes": [
                {"name": s.name, "width": s.width, "quality": s.quality}
                for s in DEFAULT_SIZES
            ],
            "extensions": list(SUPPORTED_EXTENSIONS),
            "exclude_substring": "optimized",
            "webp_method": 4,
            "manifest_name": "manifest.json",
            "log_file": None,
            "progress_bar": False,
        }

    @staticmethod
    def _parse_sizes(raw_sizes: List[dict]) -> List[SizeTier]:
        if not raw_sizes:
            raise ValueError("At least one size tier is required")

        sizes = []
        for entry in raw_sizes:
            try:
                tier = SizeTier(
                    name=str(entry["name"]),
                    width=int(entry["width"]),
                    quality=int(entry["quality"]),
                )
            except (KeyError, TypeError) as e:
                raise ValueError(f"Invalid size tier {entry!r}: {e}") from e
            sizes.append(tier)

        names = [s.name for s in sizes]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate size tier names: {names}")
        return sizes

    @property
    def tier_names(self) -> List[str]:
        return [s.name for s in self.sizes]

    def ensure_directories(self):
        """Create the output root and one directory per size tier"""
        if self.dry_run:
            logger.debug(f"Dry run: not creating {self.output_dir}")
            return

        self.output_dir.mkdir(parents=True, exist_ok=True)
        for tier in self.sizes:
            (self.output_dir / tier.name).mkdir(parents=True, exist_ok=True)

    def get_image_files(self) -> List[Path]:
        """List supported images directly under the input directory"""
        files = []
        for path in self.input_dir.iterdir():
            if not path.is_file():
                continue
            if path.suffix.lower() not in self.extensions:
                continue
            if self.exclude_substring and self.exclude_substring in path.name:
                continue
            files.append(path)
        return sorted(files)

    def process_image(self, image_path: Path) -> ProcessedImage:
        """Write every tier of a single image in both formats"""
        sanitized = sanitize_filename(image_path.name)
        logger.info(f"Processing: {image_path.name} -> {sanitized}")

        with Image.open(image_path) as img:
            # Bake EXIF orientation into the pixels before metadata is dropped
            oriented = ImageOps.exif_transpose(img)

        webp_source, jpeg_source = self._prepare_sources(oriented)
        width, height = oriented.size

        result = ProcessedImage(
            original=image_path.name,
            sanitized=sanitized,
            width=width,
            height=height,
        )
        for tier in self.sizes:
            result.outputs.append(
                self._render_tier(tier, sanitized, webp_source, jpeg_source)
            )
        return result

    @staticmethod
    def _prepare_sources(img: Image.Image):
        """Return (webp, jpeg) ready images; JPEG has no alpha so it gets a white matte"""
        if img.mode in HIGH_BIT_DEPTH_MODES:
            # convert('RGB') clips 16-bit samples at 255 instead of scaling them
            img = img.convert('I').point(lambda v: v * (1 / 256)).convert('L')

        has_alpha = img.mode in ('RGBA', 'LA', 'PA') or (
            img.mode == 'P' and 'transparency' in img.info
        )

        if has_alpha:
            webp_source = img.convert('RGBA')
            jpeg_source = Image.new('RGB', webp_source.size, WHITE)
            jpeg_source.paste(webp_source, mask=webp_source.split()[-1])
        else:
            webp_source = img.convert('RGB')
            jpeg_source = webp_source

        webp_source.info = {}
        jpeg_source.info = {}
        return webp_source, jpeg_source

    @staticmethod
    def _resize(img: Image.Image, width: int, height: int) -> Image.Image:
        if (width, height) == img.size:
            return img
        return img.resize((width, height), Image.Resampling.LANCZOS)

    def _render_tier(self, tier: SizeTier, name: str,
                     webp_source: Image.Image, jpeg_source: Image.Image) -> TierOutput:
        natural_width, natural_height = webp_source.size
        width = compute_target_width(tier.width, natural_width)
        height = max(1, round(natural_height * width / natural_width))

        tier_dir = self.output_dir / tier.name
        output = TierOutput(
            tier=tier.name,
            width=width,
            height=height,
            webp_path=tier_dir / f"{name}.webp",
            jpeg_path=tier_dir / f"{name}.jpg",
        )

        if self.dry_run:
            logger.info(f"  {tier.name}: would write {width}x{height} "
                        f"{output.webp_path.name}, {output.jpeg_path.name}")
            return output

        webp_img = self._resize(webp_source, width, height)
        webp_img.save(
            output.webp_path,
            format='WEBP',
            quality=tier.quality,
            method=self.config["webp_method"],
            **STRIP_METADATA
        )

        if jpeg_source is webp_source:
            jpeg_img = webp_img
        else:
            jpeg_img = self._resize(jpeg_source, width, height)
        jpeg_img.save(
            output.jpeg_path,
            format='JPEG',
            quality=tier.quality,
            progressive=True,
            optimize=True,
            **STRIP_METADATA
        )

        output.webp_bytes = output.webp_path.stat().st_size
        output.jpeg_bytes = output.jpeg_path.stat().st_size
        logger.info(f"  {tier.name}: WebP {output.webp_bytes / 1024:.0f}KB, "
                    f"JPEG {output.jpeg_bytes / 1024:.0f}KB")
        return output

    def generate_manifest(self, processed: List[ProcessedImage]) -> Path:
        """Write the manifest of successfully processed images"""
        manifest = {
            "generated": utc_timestamp(),
            "images": [
                {
                    "original": image.original,
                    "optimized": image.sanitized,
                    "sizes": self.tier_names,
                }
                for image in processed
            ],
        }

        manifest_path = self.output_dir / self.config["manifest_name"]
        if self.dry_run:
            logger.info(f"Dry run: manifest with {len(processed)} images not written to {manifest_path}")
            return manifest_path

        with open(manifest_path, 'w', encoding='utf-8') as f:
            json.dump(manifest, f, indent=2, ensure_ascii=False)

        logger.info(f"Manifest saved to: {manifest_path}")
        return manifest_path

    def process_batch(self) -> BatchResult:
        """Process every discovered image in turn, skipping the ones that fail"""
        self.ensure_directories()

        image_files = self.get_image_files()
        logger.info(f"Found {len(image_files)} images to process")
        logger.info("")

        result = BatchResult()
        claimed: Dict[str, str] = {}

        for image_path in tqdm(image_files, desc="Optimizing", unit="img",
                               disable=not self.config["progress_bar"]):
            sanitized = sanitize_filename(image_path.name)
            if not sanitized:
                logger.warning(f"{image_path.name} has no usable characters; outputs will be named '.webp'/'.jpg'")
            elif sanitized in claimed:
                logger.warning(f"{image_path.name} and {claimed[sanitized]} both map to '{sanitized}'; "
                               f"the later one overwrites the earlier outputs")
            claimed.setdefault(sanitized, image_path.name)

            try:
                processed = self.process_image(image_path)
            except Exception as e:
                logger.error(f"Error processing {image_path.name}: {e}")
                result.failed.append({"file": image_path.name, "error": str(e)})
                continue

            result.processed.append(processed)
            logger.info("")

        result.manifest_path = self.generate_manifest(result.processed)
        return result
