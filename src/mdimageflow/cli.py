"""CLI for mdimageflow - upload images pasted into Markdown and relink them."""

import argparse
import asyncio
import json
import logging
import platform
import sys
from pathlib import Path
from typing import Any

from . import __version__
from .adapters.command_uploader import CommandUploader
from .config import FlowConfig, check_configuration, load_config
from .images import find_local_images, image_at
from .paths.patterns import generate_watch_patterns
from .rewrite import rewrite
from .runtime import build_runtime


def cmd_predict(args: argparse.Namespace, rt: Any) -> int:
    """Print where the editor would save an image pasted into a document."""
    prediction = rt.predictor.predict(Path(args.document).resolve(), args.image)

    if args.json:
        print(json.dumps({
            "destination": str(prediction.destination_path),
            "is_directory": prediction.is_directory,
            "matched_pattern": prediction.matched_pattern,
            "variables": prediction.variables.as_dict(),
        }, indent=2))
    else:
        print(prediction.destination_path)
        if not args.quiet:
            rule = prediction.matched_pattern or "(default: same directory)"
            print(f"Rule: {rule}", file=sys.stderr)
    return 0


def cmd_patterns(args: argparse.Namespace, rt: Any) -> int:
    """Print the filesystem watch patterns."""
    patterns = generate_watch_patterns(
        rt.config.destination_rules, rt.config.watch.image_extensions
    )
    if args.json:
        print(json.dumps(patterns))
    else:
        for pattern in patterns:
            print(pattern)
    return 0


def cmd_rewrite(args: argparse.Namespace, rt: Any) -> int:
    """Replace an image reference with a remote URL."""
    document = Path(args.document).resolve()
    image = Path(args.image).resolve()

    if args.dry_run:
        text = rt.documents.read_text(document)
        if text is None:
            print(f"Document {document} not found", file=sys.stderr)
            return 1
        result = rewrite(text, image, args.url, document, rt.config.scores)
        if result is None:
            print(f"No reference to {image.name} found", file=sys.stderr)
            return 1
        print(result.text, end="")
        return 0

    outcome = rt.rewriter.replace_image_link(document, image, args.url)
    if args.json:
        print(json.dumps({
            "success": outcome.success,
            "line": outcome.line,
            "column": outcome.column,
            "error": outcome.error,
        }))
    elif outcome.success:
        if not args.quiet:
            print(f"Replaced at {outcome.line + 1}:{outcome.column + 1}")
    else:
        print(f"Error: {outcome.error}", file=sys.stderr)
    return 0 if outcome.success else 1


def cmd_images(args: argparse.Namespace, rt: Any) -> int:
    """List local image links in a document."""
    document = Path(args.document).resolve()
    text = rt.documents.read_text(document)
    if text is None:
        print(f"Document {document} not found", file=sys.stderr)
        return 1

    if args.at:
        line, _, col = args.at.partition(":")
        found = image_at(text, int(line) - 1, int(col or 1) - 1, document)
        images = [found] if found is not None else []
    else:
        images = find_local_images(text, document)

    if args.json:
        print(json.dumps([
            {
                "path": img.image_path,
                "alt": img.alt_text,
                "line": img.start_line + 1,
                "column": img.start_column + 1,
                "absolute_path": str(img.absolute_path) if img.absolute_path else None,
                "exists": img.exists,
            }
            for img in images
        ], indent=2))
    else:
        for img in images:
            marker = "✓" if img.exists else "✗"
            print(f"{marker} {img.start_line + 1}:{img.start_column + 1}\t{img.image_path}")
        if not images and not args.quiet:
            print("No local images", file=sys.stderr)
    return 0


def cmd_upload(args: argparse.Namespace, rt: Any) -> int:
    """Upload every local image in a document and relink it."""
    document = Path(args.document).resolve()
    text = rt.documents.read_text(document)
    if text is None:
        print(f"Document {document} not found", file=sys.stderr)
        return 1

    images = [img for img in find_local_images(text, document) if img.exists]
    if not images:
        if not args.quiet:
            print("No local images to upload")
        return 0

    # The same file may be referenced more than once; upload it a single time
    by_path: dict[Path, list] = {}
    for img in images:
        by_path.setdefault(img.absolute_path, []).append(img)

    failures = 0
    for path, refs in by_path.items():
        result = asyncio.run(rt.uploader.upload(path))
        if not result.success or not result.url:
            print(f"✗ {refs[0].image_path}: {result.error}", file=sys.stderr)
            failures += 1
            continue
        for img in refs:
            outcome = rt.rewriter.replace_image_link(document, path, result.url)
            if outcome.success:
                if not args.quiet:
                    print(f"✓ {img.image_path} -> {result.url}")
            else:
                print(f"✗ {img.image_path}: {outcome.error}", file=sys.stderr)
                failures += 1

    return 1 if failures else 0


def cmd_doctor(args: argparse.Namespace, rt: Any) -> int:
    """Check configuration and workspace."""
    config = rt.config
    check = check_configuration(config)

    if config.source:
        print(f"✓ Config: {config.source}")
    else:
        print("- No imageflow.toml found, using defaults")

    for folder in config.workspace_folders:
        mark = "✓" if folder.is_dir() else "✗"
        print(f"{mark} Workspace: {folder}")

    if check.has_destination:
        print(f"✓ Destination rules: {len(config.destination_rules)}")
        for rule in config.destination_rules:
            print(f"    {rule.glob_pattern} -> {rule.destination_pattern}")

    if check.issues:
        print("\nIssues:")
        for issue in check.issues:
            print(f"  {issue}")

    if check.configured:
        print("\n✓ All checks passed")
        return 0
    return 1


def cmd_watch(args: argparse.Namespace, rt: Any) -> int:
    """Watch the workspace and upload pasted images."""
    from .pipeline import ImageFlow
    from .watch import watch_workspace

    flow = None
    if rt.config.upload.command:
        flow = ImageFlow(rt.config, rt.documents, rt.uploader)
    elif not args.quiet:
        print("No upload command configured; only reporting detected images", file=sys.stderr)

    debounce_ms = getattr(args, "debounce_ms", None)
    if debounce_ms is not None:
        rt.config.watch.debounce_ms = debounce_ms

    def reload_config() -> FlowConfig:
        config = load_config(config_path=rt.config.source, workspace_path=args.workspace)
        if getattr(args, "upload_cmd", None) is not None:
            config.upload.command = args.upload_cmd
        if debounce_ms is not None:
            config.watch.debounce_ms = debounce_ms
        rt.workspace.folders = list(config.workspace_folders)
        if flow is not None and config.upload.command != rt.config.upload.command:
            flow.uploader = CommandUploader(config.upload.command)
        rt.config = config
        return config

    return watch_workspace(
        rt.config,
        rt.workspace,
        flow=flow,
        quiet=args.quiet,
        json_output=args.json,
        reload_config=reload_config,
    )


def cmd_serve(args: argparse.Namespace, rt: Any) -> int:
    """Start local JSON API server."""
    try:
        import uvicorn

        from .api.app import create_app, generate_token
    except ImportError as e:
        print(
            "Error: API dependencies not installed. "
            "Install with: pip install mdimageflow[api]",
            file=sys.stderr
        )
        print(f"Details: {e}", file=sys.stderr)
        return 1

    token_arg = getattr(args, "token", "auto")
    if token_arg == "auto":
        token = generate_token()
        print(f"Generated bearer token: {token}")
        print(f"Use in requests: Authorization: Bearer {token}")
    elif token_arg == "none":
        print("Warning: Running without authentication. Only use in trusted environments.")
        token = None
    else:
        token = token_arg

    app = create_app(rt, token=token, enable_cors=getattr(args, "cors", False))

    host = getattr(args, "host", "127.0.0.1")
    port = getattr(args, "port", 8766)
    print(f"Starting server on http://{host}:{port}")

    uvicorn.run(app, host=host, port=port, log_level="info")
    return 0


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.DEBUG if args.verbose else logging.INFO
    if args.quiet:
        level = logging.ERROR
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="imageflow", description="Upload images pasted into Markdown and relink them"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mdimageflow {__version__} (python {platform.python_version()}, "
                f"platform {platform.system().lower()})",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config file (default: search cwd/imageflow.toml, workspace/imageflow.toml)",
    )
    parser.add_argument(
        "--workspace",
        type=Path,
        default=None,
        help="Workspace root (overrides config)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Minimize output"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--json", action="store_true", help="Machine-readable output"
    )

    subparsers = parser.add_subparsers(dest="cmd", required=True)

    # predict command
    parser_predict = subparsers.add_parser(
        "predict", help="Predict where a pasted image is saved"
    )
    parser_predict.add_argument("document", help="Markdown document path")
    parser_predict.add_argument("image", help="Image file name")

    # patterns command
    subparsers.add_parser("patterns", help="Print filesystem watch patterns")

    # rewrite command
    parser_rewrite = subparsers.add_parser(
        "rewrite", help="Point an image reference at a remote URL"
    )
    parser_rewrite.add_argument("document", help="Markdown document path")
    parser_rewrite.add_argument("image", help="Local image path")
    parser_rewrite.add_argument("url", help="Remote URL")
    parser_rewrite.add_argument(
        "--dry-run", action="store_true", help="Print the rewritten document instead of saving"
    )

    # images command
    parser_images = subparsers.add_parser("images", help="List local images in a document")
    parser_images.add_argument("document", help="Markdown document path")
    parser_images.add_argument(
        "--at", default=None, help="Only the image at LINE[:COL] (1-based)"
    )

    # upload command
    parser_upload = subparsers.add_parser(
        "upload", help="Upload all local images of a document"
    )
    parser_upload.add_argument("document", help="Markdown document path")
    parser_upload.add_argument(
        "--upload-cmd", default=None, help="Upload command (overrides config)"
    )

    # doctor command
    subparsers.add_parser("doctor", help="Check configuration")

    # watch command
    parser_watch = subparsers.add_parser("watch", help="Watch for pasted images")
    parser_watch.add_argument(
        "--focus", type=Path, default=None,
        help="Document treated as focused when several could own an image"
    )
    parser_watch.add_argument(
        "--upload-cmd", default=None, help="Upload command (overrides config)"
    )
    parser_watch.add_argument(
        "--debounce-ms", type=int, default=None,
        help="Debounce window in milliseconds (default: from config, 500)"
    )

    # serve command
    parser_serve = subparsers.add_parser("serve", help="Start local JSON API server")
    parser_serve.add_argument(
        "--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)"
    )
    parser_serve.add_argument(
        "--port", type=int, default=8766, help="Port to bind (default: 8766)"
    )
    parser_serve.add_argument(
        "--token", default="auto",
        help="Bearer token: 'auto' to generate, 'none' to disable, or a literal token"
    )
    parser_serve.add_argument(
        "--cors", action="store_true", help="Enable CORS for local web UIs"
    )

    args = parser.parse_args()
    _configure_logging(args)

    rt = build_runtime(
        workspace_path=args.workspace,
        config_path=args.config,
        focused=getattr(args, "focus", None),
        upload_command=getattr(args, "upload_cmd", None),
    )

    handlers = {
        "predict": cmd_predict,
        "patterns": cmd_patterns,
        "rewrite": cmd_rewrite,
        "images": cmd_images,
        "upload": cmd_upload,
        "doctor": cmd_doctor,
        "watch": cmd_watch,
        "serve": cmd_serve,
    }

    handler = handlers.get(args.cmd)
    if handler:
        try:
            exit_code = handler(args, rt)
            sys.exit(exit_code)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        print(f"Unknown command: {args.cmd}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
