"""Create sample screens, patterns and a finder config for manual testing"""
import argparse
import json
import os

from screenfind import samples
from screenfind.geometry import Rectangle
from screenfind.images import to_pil

# (pattern name, rectangle on the 1920x1080 reference)
PATTERNS = [
    ("widget", Rectangle(600, 400, 200, 150)),
    ("label", Rectangle(630, 560, 120, 40)),
    ("corner", Rectangle(0, 0, 100, 100)),
]


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--out", default="media", help="Output directory")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument(
        "--scale",
        type=float,
        action="append",
        default=[],
        help="Display scale of an extra capture (repeatable, default 0.8)",
    )
    args = parser.parse_args()

    pattern_dir = os.path.join(args.out, "patterns")
    os.makedirs(pattern_dir, exist_ok=True)

    print("Creating reference screen...")
    reference = samples.make_reference_screen(seed=args.seed)
    reference_path = os.path.join(args.out, "reference.png")
    to_pil(reference).save(reference_path)
    print(f"Saved reference to {reference_path}")

    factors = args.scale or [0.8]
    for factor in factors:
        capture = samples.make_scaled_capture(reference, factor)
        capture_path = os.path.join(args.out, f"capture_{int(round(factor * 100))}.png")
        to_pil(capture).save(capture_path)
        print(f"Saved {capture.width}x{capture.height} capture to {capture_path}")

    transparent = samples.with_transparent_background(reference)
    transparent_path = os.path.join(args.out, "reference_rgba.png")
    to_pil(transparent).save(transparent_path)
    print(f"Saved 32-bit capture to {transparent_path}")

    print("\nCreating patterns...")
    for name, rect in PATTERNS:
        pattern = samples.crop_pattern(reference, rect, name=name)
        pattern_path = os.path.join(pattern_dir, f"{name}.png")
        to_pil(pattern.image).save(pattern_path)
        print(f"Saved pattern to {pattern_path}")

    config = {
        "pattern_dir": pattern_dir,
        "pattern_native_size": list(reference.size),
        "capture_backend": "file",
        "capture_path": os.path.join(
            args.out, f"capture_{int(round(factors[0] * 100))}.png"
        ),
        "targets": {
            "widget": {"patterns": ["widget"]},
            "label": {"patterns": ["label"]},
            "corner": {"patterns": ["corner"], "region": [0, 0, 400, 300]},
        },
        "dependencies": [
            {
                "target": "label",
                "anchor": "widget",
                "offset": [-40, 80, 0, 20],
            }
        ],
    }
    config_path = os.path.join(args.out, "screenfind.json")
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2)
    print(f"\nSaved finder config to {config_path}")
    print("\nDone!")


if __name__ == "__main__":
    main()
