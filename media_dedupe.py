#!/usr/bin/env python3
"""
media_dedupe.py - Media file deduplication and copy tool.

Walks a directory tree, hashes every photo/video file it finds and keeps one
original per distinct content hash. Optionally copies the deduplicated set
into a destination directory, renaming files whose base names collide:
  - Scan: recursive walk, extension filter, chunked content hash
  - Dedup: first-seen file wins, colliding names get a numeric suffix
  - Copy: stream each kept file to the destination, with per-file stats

License: MIT
"""

import argparse
import hashlib
import logging
import os
import shutil
import stat
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

try:
    from tqdm import tqdm
except ImportError:
    print("ERROR: tqdm not installed. Run: pip install tqdm", file=sys.stderr)
    sys.exit(1)

# -----------------------------------------------------------------------------
# Constants
# -----------------------------------------------------------------------------

LOGGER_NAME = "media_dedupe"
DEFAULT_CHUNK_SIZE = 256 * 1024  # 256KB
DEFAULT_ALGORITHM = "md5"
HASH_ALGORITHMS = ("md5", "sha1", "sha256", "blake2b")

# Matched case-insensitively against the end of the file name
MEDIA_EXTENSIONS = frozenset({".jpg", ".jpeg", ".mpeg", ".mp4", ".gif"})

logger = logging.getLogger(LOGGER_NAME)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class MediaDedupeError(Exception):
    """Base class for errors raised by this tool."""


class ValidationError(MediaDedupeError):
    """Invalid combination of command-line options."""


class HashError(MediaDedupeError):
    """A file could not be read for hashing."""


class CopyError(MediaDedupeError):
    """A file could not be copied to its destination."""


class NotRegularFileError(CopyError):
    """Copy source is not a regular file."""


# -----------------------------------------------------------------------------
# Data Classes
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Config:
    """Run configuration, built once from the command line."""
    path: Path
    dest: Optional[Path] = None
    copy: bool = False
    verbose: bool = False
    dups_only: bool = False
    quiet: bool = False
    legacy_dedup: bool = False
    algorithm: str = DEFAULT_ALGORITHM
    chunk_size: int = DEFAULT_CHUNK_SIZE
    extensions: frozenset = MEDIA_EXTENSIONS
    log_file: Optional[Path] = None
    progress: bool = True


@dataclass
class Entry:
    """One distinct content hash and the first file seen with it."""
    hash: str
    original_path: Path
    dest_path: Optional[Path] = None
    renamed: bool = False

    def assign(self, dest_path: Path, renamed: bool = False):
        if self.dest_path is not None:
            raise MediaDedupeError(
                f"Destination already assigned for {self.original_path}: {self.dest_path}"
            )
        self.dest_path = dest_path
        self.renamed = renamed


@dataclass
class Index:
    """Content hash -> Entry. The first path added for a hash is kept."""
    entries: dict = field(default_factory=dict)
    # add() calls that hit an existing hash
    duplicates: int = 0

    def add(self, digest: str, path: Path) -> None:
        if digest in self.entries:
            self.duplicates += 1
            return
        self.entries[digest] = Entry(hash=digest, original_path=path)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries.values())

    def __contains__(self, digest: str) -> bool:
        return digest in self.entries

    def __getitem__(self, digest: str) -> Entry:
        return self.entries[digest]

    def duplicate_entries(self) -> list[Entry]:
        """Entries the dedup pass had to rename."""
        return [e for e in self if e.renamed]


@dataclass
class ScanStats:
    """Statistics for the scan stage."""
    visited: int = 0
    matched: int = 0
    hash_errors: int = 0
    errors: int = 0
    elapsed: float = 0.0


@dataclass
class CopyStats:
    """Statistics for the copy stage."""
    files: int = 0
    bytes: int = 0
    elapsed: float = 0.0
    errors: int = 0


# -----------------------------------------------------------------------------
# Utility Functions
# -----------------------------------------------------------------------------

def setup_logging(log_file: Optional[Path] = None) -> logging.Logger:
    """Configure console logging, plus a detailed log file if requested."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.DEBUG)

    # Console handler - summary only
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(ch)

    # File handler - detailed
    if log_file is not None:
        fh = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
        logger.addHandler(fh)

    return logger


def report_error(config: Config, message: str):
    """Log a per-file error; quiet mode keeps it out of the console."""
    if config.quiet:
        logger.debug(message)
    else:
        logger.error(message)


def parse_extensions(value: str) -> frozenset:
    """Parse a comma-separated extension list such as 'jpg,.PNG'."""
    extensions = set()
    for ext in value.split(','):
        ext = ext.strip().lower()
        if not ext:
            continue
        extensions.add(ext if ext.startswith('.') else f".{ext}")
    return frozenset(extensions)


def is_media_file(path, extensions=MEDIA_EXTENSIONS) -> bool:
    """Check if the file name ends with one of the media extensions ('.jpg' itself included)."""
    return Path(path).name.lower().endswith(tuple(extensions))


def compute_hash(file_path, algorithm: str = DEFAULT_ALGORITHM,
                 chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Compute the hex digest of a file in chunks."""
    hasher = hashlib.new(algorithm)
    try:
        with open(file_path, 'rb') as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                hasher.update(chunk)
    except OSError as e:
        raise HashError(f"Failed to hash {file_path}: {e}") from e
    return hasher.hexdigest()


# -----------------------------------------------------------------------------
# Scanning
# -----------------------------------------------------------------------------

def scan_tree(root, index: Index, config: Config) -> ScanStats:
    """
    Walk `root` and add every regular media file to `index`.

    Directories and files are visited in sorted order, so the first path
    recorded for a hash is stable between runs. Symlinks and special files
    are skipped. Traversal errors are reported and the walk carries on with
    the rest of the tree.
    """
    stats = ScanStats()
    root = os.path.abspath(root)

    def on_error(err: OSError):
        stats.errors += 1
        report_error(config, f"Error: {err.strerror}, path {err.filename}")

    logger.info(f"Processing {root}:")
    start = time.perf_counter()

    with tqdm(desc="Scanning", unit="files", leave=False,
              disable=not config.progress) as pbar:
        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=False):
            dirnames.sort()
            for filename in sorted(filenames):
                file_path = os.path.abspath(os.path.join(dirpath, filename))
                stats.visited += 1
                pbar.set_postfix_str(file_path, refresh=False)
                pbar.update(1)

                try:
                    mode = os.lstat(file_path).st_mode
                except OSError as e:
                    on_error(e)
                    continue

                if not stat.S_ISREG(mode):
                    logger.debug(f"Skipping non-regular file: {file_path}")
                    continue
                if not is_media_file(file_path, config.extensions):
                    continue

                stats.matched += 1
                try:
                    digest = compute_hash(file_path, config.algorithm, config.chunk_size)
                except HashError as e:
                    stats.hash_errors += 1
                    logger.debug(str(e))
                    continue

                index.add(digest, Path(file_path))

    stats.elapsed = time.perf_counter() - start
    logger.info(f"Done in {stats.elapsed:.3f}s")
    logger.info(
        f"Matched {stats.matched:,} files: {len(index):,} unique, "
        f"{index.duplicates:,} duplicates, "
        f"{stats.errors + stats.hash_errors:,} errors"
    )
    return stats


# -----------------------------------------------------------------------------
# Deduplication Logic
# -----------------------------------------------------------------------------

def dedup(index: Index, dest: Optional[Path], legacy: bool = False) -> int:
    """
    Assign a destination path to the entries of `index`.

    The first entry to use a base name keeps it; later entries with the same
    base name become `<name>-<n><ext>`, with one counter shared by every
    rename in the pass. In legacy mode the first holder of a name gets no
    destination at all, so only the renamed entries are copied.

    Returns the number of renamed entries.
    """
    claimed = set()
    counter = 0
    renamed = 0

    def target(name: str) -> Path:
        return Path(dest) / name if dest is not None else Path(name)

    for entry in index:
        base = entry.original_path.name
        if base not in claimed:
            claimed.add(base)
            if not legacy:
                entry.assign(target(base))
            continue

        ext = entry.original_path.suffix
        new_name = f"{base}-{counter}{ext}"
        counter += 1
        while new_name in claimed:
            new_name = f"{base}-{counter}{ext}"
            counter += 1
        claimed.add(new_name)

        entry.assign(target(new_name), renamed=True)
        renamed += 1
        logger.debug(f"Collision rename: {base} -> {new_name}")

    return renamed


# -----------------------------------------------------------------------------
# Copying
# -----------------------------------------------------------------------------

def copy_file(src, dst, chunk_size: int = DEFAULT_CHUNK_SIZE) -> tuple[int, float]:
    """
    Copy `src` to `dst`, truncating any existing destination.

    Returns (bytes copied, elapsed seconds). The destination directory must
    already exist.
    """
    start = time.perf_counter()
    if not stat.S_ISREG(os.stat(src).st_mode):
        raise NotRegularFileError(f"{src} is not a regular file")
    if os.path.exists(dst) and os.path.samefile(src, dst):
        raise CopyError(f"{src} and {dst} are the same file")

    with open(src, 'rb') as fsrc, open(dst, 'wb') as fdst:
        shutil.copyfileobj(fsrc, fdst, chunk_size)
        n_bytes = fdst.tell()

    return n_bytes, time.perf_counter() - start


def copy_entries(index: Index, config: Config) -> CopyStats:
    """Copy every entry with a destination path; failures are counted, not raised."""
    stats = CopyStats()
    pending = [e for e in index if e.dest_path is not None]

    for entry in tqdm(pending, desc="Copying", unit="files", leave=False,
                      disable=not config.progress):
        try:
            n_bytes, elapsed = copy_file(entry.original_path, entry.dest_path, config.chunk_size)
        except (OSError, CopyError) as e:
            stats.errors += 1
            report_error(config, f"ERROR: copying {entry.original_path} -> {entry.dest_path}: {e}")
            continue

        logger.info(
            f"Copying {entry.original_path} -> {entry.dest_path} ... "
            f"{n_bytes} bytes in {elapsed:f} seconds"
        )
        stats.files += 1
        stats.bytes += n_bytes
        stats.elapsed += elapsed

    summary = f"Copy complete, {stats.files:,} files, {stats.bytes:,} bytes in {stats.elapsed:.3f}s"
    if stats.errors:
        summary += f", {stats.errors:,} errors"
    logger.info(summary)
    return stats


# -----------------------------------------------------------------------------
# Reporting
# -----------------------------------------------------------------------------

def format_index(index: Index, dups_only: bool = False) -> list[str]:
    """Render the index, one line per entry (renamed entries only if `dups_only`)."""
    lines = []
    for entry in index:
        if dups_only:
            if entry.renamed:
                lines.append(f" D: {entry.hash}: {entry.original_path} -> {entry.dest_path}")
        elif entry.renamed:
            lines.append(f"D - {entry.hash}: {entry.original_path} -> {entry.dest_path}")
        elif entry.dest_path is not None:
            lines.append(f"U - {entry.hash}: {entry.original_path} -> {entry.dest_path}")
        else:
            lines.append(f"U - {entry.hash}: {entry.original_path}")
    return lines


def print_summary(index: Index, scan_stats: ScanStats, copy_stats: Optional[CopyStats]):
    """Print final summary statistics."""
    logger.info("")
    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info("=" * 60)
    logger.info(f"Files visited:      {scan_stats.visited:,}")
    logger.info(f"Media files:        {scan_stats.matched:,}")
    logger.info(f"Unique hashes:      {len(index):,}")
    logger.info(f"Duplicate content:  {index.duplicates:,}")
    logger.info(f"Renamed on copy:    {len(index.duplicate_entries()):,}")
    logger.info(f"Scan errors:        {scan_stats.errors + scan_stats.hash_errors:,}")
    if copy_stats is not None:
        logger.info(f"Copied:             {copy_stats.files:,} ({copy_stats.bytes:,} bytes)")
        logger.info(f"Copy errors:        {copy_stats.errors:,}")
    logger.info("=" * 60)


# -----------------------------------------------------------------------------
# Main Processing
# -----------------------------------------------------------------------------

def run(config: Config) -> tuple[Index, ScanStats, Optional[CopyStats]]:
    """Run scan, dedup and (optionally) copy to completion."""
    index = Index()
    scan_stats = scan_tree(config.path, index, config)
    dedup(index, config.dest, legacy=config.legacy_dedup)

    if config.verbose:
        for line in format_index(index, dups_only=config.dups_only):
            print(line)

    copy_stats = None
    if config.copy:
        copy_stats = copy_entries(index, config)

    return index, scan_stats, copy_stats


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Find duplicate media files by content hash and copy a deduplicated set",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List every media file found, one line per distinct hash
  python media_dedupe.py -path ~/Pictures -verbose

  # Show only entries whose names collided
  python media_dedupe.py -path ~/Pictures -verbose -d

  # Copy the deduplicated set, hiding per-file errors
  python media_dedupe.py -path ~/Pictures -copy -dest /mnt/backup/photos -q

  # Hash with sha256 and also match .png files
  python media_dedupe.py -path ~/Pictures --algorithm sha256 --extensions jpg,jpeg,png
        """
    )

    parser.add_argument("-path", "--path", default="", help="Path to start from")
    parser.add_argument("-dest", "--dest", default="", help="Destination path")
    parser.add_argument("-copy", "--copy", action="store_true", help="Copy files to dest")
    parser.add_argument("-verbose", "--verbose", action="store_true", help="Verbose")
    parser.add_argument(
        "-d", "--dups", dest="dups_only", action="store_true",
        help="Just show dups in verbose"
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress errors")
    parser.add_argument(
        "--legacy-dedup", action="store_true",
        help="Do not copy the first file holding a name, only its renamed collisions"
    )
    parser.add_argument(
        "--algorithm", choices=HASH_ALGORITHMS, default=DEFAULT_ALGORITHM,
        help=f"Content hash algorithm (default: {DEFAULT_ALGORITHM})"
    )
    parser.add_argument(
        "--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE,
        help=f"Chunk size for hashing in bytes (default: {DEFAULT_CHUNK_SIZE})"
    )
    parser.add_argument(
        "--extensions", type=str, default=None,
        help="Comma-separated list of extensions to match (e.g., .jpg,.png)"
    )
    parser.add_argument("--log-file", type=Path, default=None, help="Write a detailed log here")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress bars")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Validate parsed arguments and freeze them into a Config."""
    if not args.path:
        raise ValidationError("No starting path")
    if args.copy and not args.dest:
        raise ValidationError("Copy flag set, no destination path")
    if args.dest and not args.copy:
        raise ValidationError("Destination path set, copy not requested")
    if args.chunk_size <= 0:
        raise ValidationError("Chunk size must be positive")

    extensions = MEDIA_EXTENSIONS
    if args.extensions:
        extensions = parse_extensions(args.extensions)
        if not extensions:
            raise ValidationError(f"No extensions in {args.extensions!r}")

    if args.dest:
        path_resolved = Path(args.path).resolve()
        dest_resolved = Path(args.dest).resolve()
        if dest_resolved == path_resolved:
            raise ValidationError("Destination path cannot be the same as the starting path")
        if dest_resolved.is_relative_to(path_resolved):
            raise ValidationError("Destination path cannot be inside the starting path")

    if args.log_file is not None and not args.log_file.parent.is_dir():
        raise ValidationError(f"Log file directory does not exist: {args.log_file.parent}")

    return Config(
        path=Path(args.path),
        dest=Path(args.dest) if args.dest else None,
        copy=args.copy,
        verbose=args.verbose,
        dups_only=args.dups_only,
        quiet=args.quiet,
        legacy_dedup=args.legacy_dedup,
        algorithm=args.algorithm,
        chunk_size=args.chunk_size,
        extensions=extensions,
        log_file=args.log_file,
        progress=not args.no_progress,
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"ERROR: {e}")
        return 1

    setup_logging(config.log_file)

    logger.info("=" * 60)
    logger.info("MEDIA DEDUPLICATION TOOL")
    logger.info("=" * 60)
    logger.info(f"Path:          {config.path}")
    if config.copy:
        logger.info(f"Destination:   {config.dest}")
    logger.info(f"Algorithm:     {config.algorithm}")
    logger.info(f"Extensions:    {', '.join(sorted(config.extensions))}")
    logger.info(f"Legacy dedup:  {config.legacy_dedup}")
    logger.info("=" * 60)

    try:
        index, scan_stats, copy_stats = run(config)
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user")
        return 130

    print_summary(index, scan_stats, copy_stats)
    return 0


if __name__ == "__main__":
    sys.exit(main())
