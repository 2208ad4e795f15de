#!/usr/bin/env python3
"""
MP-PCA Denoising - Command Line Entry Point

Denoise multi-channel (e.g. diffusion-weighted) volume data and estimate the
noise level based on the optimal threshold for PCA.

Usage:
    python main.py dwi.npy out.npy [--size 5] [--noise noise.npy] [--nthreads N]
"""
import sys
import logging
import argparse
from typing import List, Optional

from dwio import load_volume, save_volume, volume_format
from models.app_settings import get_settings
from processors.mppca_denoise import MPPCADenoise, MAX_WINDOW_SIZE
from utils.console import console_print
from utils.errors import ConfigurationError, DenoisingError
from utils.thread_count import number_of_threads

# Set up logging
logger = logging.getLogger(__name__)


def _bounded_int(low: int, high: int):
    def parse(text: str) -> int:
        try:
            value = int(text)
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid integer value: '{text}'")
        if not low <= value <= high:
            raise argparse.ArgumentTypeError(f"value must be in [{low}, {high}], got {value}")
        return value
    return parse


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dwidenoise',
        description='Denoise DWI data and estimate the noise level based on '
                    'the optimal threshold for PCA (MP-PCA).'
    )
    parser.add_argument('dwi', help='the input diffusion-weighted image (.npy or .zarr)')
    parser.add_argument('out', help='the output denoised DWI image (.npy or .zarr)')
    parser.add_argument('--size', '-s', type=_bounded_int(1, MAX_WINDOW_SIZE), default=None,
                        help='set the window size of the denoising filter (odd; '
                             'default from settings, normally 5)')
    parser.add_argument('--noise', '-n', default=None,
                        help='the output noise map')
    parser.add_argument('--nthreads', type=_bounded_int(0, 1024), default=None,
                        help='number of worker threads (0: use environment / settings)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='enable debug logging')
    return parser


def run(args: argparse.Namespace) -> None:
    """Execute one denoising run; raises on any failure."""
    settings = get_settings()
    window_size = args.size if args.size is not None else settings.get_default_window_size()

    # Validate everything before any work begins
    volume_format(args.out)
    if args.noise:
        volume_format(args.noise)
    number_of_threads(args.nthreads)
    processor = MPPCADenoise(window_size=window_size, return_noise=bool(args.noise))

    dwi = load_volume(args.dwi)
    logger.info(f"Loaded {dwi!r}")

    output = processor.process(dwi)

    save_volume(output.denoised, args.out)
    if args.noise:
        save_volume(output.noise, args.noise)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point; returns the process exit status."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s: %(message)s'
    )

    try:
        run(args)
    except (ConfigurationError, DenoisingError, FileNotFoundError) as e:
        console_print(f"dwidenoise: [ERROR] {e}")
        return 1
    except Exception as e:
        logger.debug("Unexpected failure", exc_info=True)
        console_print(f"dwidenoise: [ERROR] {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
