#!/usr/bin/env python3
"""
Standalone script for evaluating scale calibration.

Usage:
    python evaluate_scale.py capture.png pattern.png
    python evaluate_scale.py --synthetic 0.8 --save calibration.png
"""

import argparse
import logging
import os
from typing import Optional, Sequence

import matplotlib.pyplot as plt

from screenfind import samples
from screenfind.geometry import Rectangle
from screenfind.images import ImageData, load_image, normalize
from screenfind.logging_config import setup_logging
from screenfind.matcher import Pattern, match
from screenfind.scaling import (
    CALIBRATION_MARGIN,
    CALIBRATION_MIN_SCORE,
    SCALE_CANDIDATES,
    calibrate_scale,
)

SYNTHETIC_PATTERN = Rectangle(600, 400, 200, 150)


def visualize_calibration(
    capture: ImageData,
    pattern: Pattern,
    candidates: Sequence[float] = SCALE_CANDIDATES,
    margin: float = CALIBRATION_MARGIN,
    save_path: Optional[str] = None,
) -> None:
    """
    Run the calibration sweep and plot the best score per candidate.

    Args:
        capture: Calibration capture containing the pattern.
        pattern: Pattern to locate.
        candidates: Scale factors to try.
        margin: Required lead of the winner over the runner-up.
        save_path: Optional path to save the figure.
    """
    print(f"\n{'=' * 60}")
    print(f"Calibrating {pattern.name} ({pattern.size[0]}x{pattern.size[1]})")
    print(f"Capture: {capture.width}x{capture.height} ({capture.mode})")
    print(f"{'=' * 60}\n")

    result = calibrate_scale(pattern, capture, candidates=candidates, margin=margin)

    for factor in sorted(result.scores):
        marker = " <- best" if factor == result.best else ""
        print(f"  scale {factor:.3f}: {result.scores[factor]:.4f}{marker}")
    lead = f"{result.lead:.4f}" if result.lead is not None else "n/a"
    print(f"\nBest: {result.best} | lead: {lead} | decisive: {result.decisive}")

    fig, axes = plt.subplots(1, 3, figsize=(16, 5))
    fig.suptitle(f"Scale Calibration: {pattern.name}", fontsize=16)

    factors = sorted(result.scores)
    scores = [result.scores[f] for f in factors]
    colors = ["tab:green" if f == result.best else "tab:gray" for f in factors]
    axes[0].bar([f"{f:g}" for f in factors], scores, color=colors)
    axes[0].axhline(CALIBRATION_MIN_SCORE, color="tab:red", linestyle="--")
    axes[0].set_ylim(0.0, 1.0)
    axes[0].set_xlabel("scale factor")
    axes[0].set_ylabel("best similarity")
    axes[0].set_title(f"Best score per candidate\n(lead: {lead})")

    axes[1].imshow(normalize(pattern.image).pixels)
    axes[1].set_title("Pattern")
    axes[1].axis("off")

    axes[2].imshow(normalize(capture).pixels)
    if result.best is not None:
        found = match(pattern, capture, scale=result.best, min_similarity=0.0)
        if found:
            best = found[0]
            axes[2].add_patch(
                plt.Rectangle(
                    (best.x, best.y),
                    best.width,
                    best.height,
                    fill=False,
                    edgecolor="lime",
                    linewidth=2,
                )
            )
            axes[2].set_title(
                f"Match at scale {result.best:g}\n({best.score:.3f} at {best.x},{best.y})"
            )
    axes[2].axis("off")

    plt.tight_layout()

    if save_path:
        plt.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"\nVisualization saved to: {save_path}")

    plt.show()
    print(f"\n{'=' * 60}\n")


def main():
    parser = argparse.ArgumentParser(
        description="Evaluate scale calibration of a pattern against a capture.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s media/capture_80.png media/patterns/widget.png
  %(prog)s --synthetic 0.8 --save calibration.png
        """,
    )
    parser.add_argument("capture_path", nargs="?", help="Path to the capture image")
    parser.add_argument("pattern_path", nargs="?", help="Path to the pattern image")
    parser.add_argument(
        "--synthetic",
        type=float,
        default=None,
        help="Generate a synthetic capture at this display scale instead",
    )
    parser.add_argument(
        "-m",
        "--margin",
        type=float,
        default=CALIBRATION_MARGIN,
        help=f"Required lead over the runner-up (default: {CALIBRATION_MARGIN})",
    )
    parser.add_argument(
        "-s",
        "--save",
        type=str,
        default=None,
        help="Save visualization to this path (optional)",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.synthetic is not None:
        reference = samples.make_reference_screen()
        capture = samples.make_scaled_capture(reference, args.synthetic)
        pattern = samples.crop_pattern(reference, SYNTHETIC_PATTERN, name="synthetic")
    else:
        if not args.capture_path or not args.pattern_path:
            parser.error("capture_path and pattern_path are required without --synthetic")
        for path in (args.capture_path, args.pattern_path):
            if not os.path.exists(path):
                print(f"Error: File not found: {path}")
                return 1
        capture = load_image(args.capture_path)
        name = os.path.splitext(os.path.basename(args.pattern_path))[0]
        pattern = Pattern(name=name, image=load_image(args.pattern_path))

    try:
        visualize_calibration(
            capture=capture,
            pattern=pattern,
            margin=args.margin,
            save_path=args.save,
        )
        return 0
    except Exception as e:
        print(f"Error: {e}")
        import traceback

        traceback.print_exc()
        return 1


if __name__ == "__main__":
    exit(main())
