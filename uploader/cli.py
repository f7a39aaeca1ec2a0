"""Command line entry point: upload one file in chunks."""

import sys
import logging
import argparse

from uploader.config import UploaderConfig
from uploader.transport import TransferError, UploadTransport

logger = logging.getLogger("uploader")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chunk-upload", description="Upload a video to the chunked upload service.")
    parser.add_argument("file", help="file to upload")
    parser.add_argument("--url", help="service base URL (default: UPLOADER_BASE_URL or http://localhost:8080)")
    parser.add_argument("--session", help="session id to use; required with --resume")
    parser.add_argument("--resume", action="store_true", help="ask the server which chunks it already has and send only the rest")
    parser.add_argument("--chunk-size", type=int, help="chunk size in bytes")
    parser.add_argument("--workers", type=int, help="parallel chunk transfers (1 = strictly sequential)")
    retries = parser.add_mutually_exclusive_group()
    retries.add_argument("--max-retries", type=int, help="retries per chunk before giving up")
    retries.add_argument("--retry-forever", action="store_true", help="retry until interrupted")
    parser.add_argument("--debug", action="store_true")
    return parser


def _config_from_args(args: argparse.Namespace) -> UploaderConfig:
    overrides = {}
    if args.url:
        overrides["BASE_URL"] = args.url
    if args.chunk_size:
        overrides["CHUNK_SIZE"] = args.chunk_size
    if args.workers:
        overrides["MAX_WORKERS"] = args.workers
    if args.max_retries is not None:
        overrides["MAX_RETRIES"] = args.max_retries
    if args.retry_forever:
        overrides["MAX_RETRIES"] = None
    return UploaderConfig(**overrides)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.resume and not args.session:
        parser.error("--resume needs --session")

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    def progress(done: int, total: int) -> None:
        print(f"\r  {done}/{total} chunks ({done / total * 100:.1f}%)", end="", flush=True)

    transport = UploadTransport(_config_from_args(args))
    try:
        result = transport.upload_file(args.file, session_id=args.session, resume=args.resume, progress=progress)
    except KeyboardInterrupt:
        transport.cancel()
        print("\nUpload interrupted.")
        return 130
    except (TransferError, FileNotFoundError, ValueError) as e:
        print()
        logger.error(f"Upload failed: {e}")
        return 1
    finally:
        transport.close()

    print()
    print(f"Session:  {result.session_id}")
    print(f"Chunks:   {result.total_chunks} ({result.duplicates} duplicate, {len(result.skipped)} already on server)")
    print(f"File:     {result.file_name}")
    print(f"URL:      {result.url}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
