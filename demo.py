#!/usr/bin/env python3
"""
PD Estimator Demo Script

Run the card-calibrated PD estimate on an image: auto-suggest markers,
optionally override them from a JSON file, then print the measurement and
write the annotated export.

Usage:
    python demo.py <image_path> [options]
    
Examples:
    python demo.py photo.jpg
    python demo.py photo.jpg --markers markers.json
    python demo.py photo.jpg --no-auto --output-dir my_debug
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from datetime import datetime

import cv2

from pd_estimator.export import render_measurement_png
from pd_estimator.landmarks import AutoSuggester, FaceLandmarkerHandle
from pd_estimator.markers import MarkerSet
from pd_estimator.session import CapturedPhoto, MeasurementSession
from pd_service import DEFAULT_MODEL_PATH


def create_debug_dir(base_dir: str = "debug") -> str:
    """Create timestamped debug directory."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    debug_dir = os.path.join(base_dir, timestamp)
    os.makedirs(debug_dir, exist_ok=True)
    return debug_dir


def print_header(title: str) -> None:
    """Print formatted header."""
    line = "=" * 70
    print(f"\n{line}")
    print(f"  {title}")
    print(line)


def print_section(title: str) -> None:
    """Print formatted section header."""
    print(f"\n{'-' * 40}")
    print(f"  {title}")
    print(f"{'-' * 40}")


async def run(image_path: str, debug_dir: str, markers_path: str | None, auto: bool, model_path: str) -> None:
    image = cv2.imread(image_path)
    if image is None:
        print(f"Error: Could not load image: {image_path}")
        return
    
    h, w = image.shape[:2]
    print(f"Image: {image_path}")
    print(f"Size: {w}x{h}")
    
    session = MeasurementSession(CapturedPhoto.from_image(image))
    
    if auto:
        print_section("AUTO-SUGGEST")
        handle = FaceLandmarkerHandle(model_path=model_path)
        try:
            await session.run_auto_detect(AutoSuggester(handle))
        finally:
            handle.close()
        print(f"  Status: {session.auto_state.value}")
        print(f"  {session.auto_message}")
    
    if markers_path:
        with open(markers_path, "r", encoding="utf-8") as f:
            session.set_markers(MarkerSet.from_dict(json.load(f)))
        print(f"  Markers loaded from {markers_path}")
    
    print_section("MARKERS")
    for key, point in session.markers.items():
        print(f"  {key.value:<11} ({point.x:.1f}, {point.y:.1f})")
    
    result = session.measurement
    print_section("RESULT")
    print(f"  PD: {result.pd_mm:.2f} mm (rounded {result.pd_mm_rounded:.1f} mm)")
    print(f"  Card width: {result.card_pixel_width:.1f} px")
    print(f"  Scale: {result.mm_per_pixel:.4f} mm/px")
    print(f"  Confidence: {result.confidence:.0%} ({result.quality})")
    print(f"  {result.quality_message}")
    if result.issues:
        print("  Issues:")
        for issue in result.issues:
            print(f"    ⚠️ {issue}")
    
    export_path = os.path.join(debug_dir, "result.png")
    with open(export_path, "wb") as f:
        f.write(render_measurement_png(image, session.markers, result))
    print(f"\n  → Export: {export_path}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Estimate PD on an image with a reference card",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    
    parser.add_argument("image_path", help="Path to input image")
    parser.add_argument("-o", "--output-dir", default="debug",
                        help="Base directory for debug output")
    parser.add_argument("--markers", default=None,
                        help="JSON file with leftPupil/rightPupil/leftCard/rightCard points")
    parser.add_argument("--no-auto", action="store_true",
                        help="Skip face-landmark auto-suggest")
    parser.add_argument("--model", default=os.getenv("PD_FACE_LANDMARKER_MODEL", DEFAULT_MODEL_PATH),
                        help="Path to face_landmarker.task")
    
    args = parser.parse_args()
    
    if not os.path.exists(args.image_path):
        print(f"Error: Image not found: {args.image_path}")
        sys.exit(1)
    
    debug_dir = create_debug_dir(args.output_dir)
    
    print_header("PD ESTIMATOR DEMO")
    print(f"  Input: {args.image_path}")
    print(f"  Output: {debug_dir}")
    
    asyncio.run(run(args.image_path, debug_dir, args.markers, not args.no_auto, args.model))
    print("\n✓ Done!")


if __name__ == "__main__":
    main()
