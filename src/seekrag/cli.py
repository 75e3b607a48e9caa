"""Command line access to document ingestion and knowledge queries."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

from seekrag.auth import BearerCredential
from seekrag.config import Settings, get_settings
from seekrag.errors import SeekRAGError
from seekrag.ingestion import BackoffPolicy, DocumentIngestionClient, StatusPoller
from seekrag.knowledge import KnowledgeQueryClient
from seekrag.models import DocumentPayload, DocumentStatusSnapshot
from seekrag.services import AskOptions, ConversationService
from seekrag.sessions import ConversationSessionStore


def _emit(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _progress(snapshot: DocumentStatusSnapshot) -> None:
    print(f"{snapshot.id}: {snapshot.status.value}", file=sys.stderr)


async def _upload(args: argparse.Namespace, settings: Settings) -> int:
    path = Path(args.file)
    payload = DocumentPayload(filename=path.name, content=path.read_bytes())
    credential = BearerCredential.from_token(args.token)
    async with DocumentIngestionClient(settings) as client:
        handle = await client.upload(payload, credential)
        handle = await client.wait_submitted(handle.id)
        result: dict[str, object] = {"documentId": handle.id, "status": handle.status.value}
        if args.wait and not handle.status.is_terminal:
            poller = StatusPoller(client, BackoffPolicy.from_settings(settings))
            snapshot = await poller.wait_until_terminal(handle.id, credential, on_update=_progress)
            result = snapshot.to_dict()
    _emit(result)
    return 0


async def _status(args: argparse.Namespace, settings: Settings) -> int:
    credential = BearerCredential.from_token(args.token)
    async with DocumentIngestionClient(settings) as client:
        client.track(args.document_id)
        snapshot = await client.poll_status(args.document_id, credential)
    _emit(snapshot.to_dict())
    return 0


async def _delete(args: argparse.Namespace, settings: Settings) -> int:
    credential = BearerCredential.from_token(args.token)
    async with DocumentIngestionClient(settings) as client:
        client.track(args.document_id)
        result = await client.delete(args.document_id, credential)
    _emit({"success": result.success, "message": result.message})
    return 0


async def _ask(args: argparse.Namespace, settings: Settings) -> int:
    store = ConversationSessionStore()
    session = store.create("cli")
    options = AskOptions(
        kb_list=args.kb,
        model=args.model,
        stream=not args.no_stream,
        documents=args.document or None,
    )
    async with KnowledgeQueryClient(settings) as client:
        service = ConversationService(store, client, settings=settings)
        result = await service.ask(session.id, args.question, options, token=args.token)
    _emit(
        {
            "response": result.response,
            "seeds": [seed.to_dict() for seed in result.display_seeds()],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="seekrag", description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    upload = sub.add_parser("upload", help="Upload a document for indexing")
    upload.add_argument("file", help="Path of the document to upload")
    upload.add_argument("--wait", action="store_true", help="Poll until processing finishes")

    status = sub.add_parser("status", help="Show the processing status of a document")
    status.add_argument("document_id")

    delete = sub.add_parser("delete", help="Delete a document (best effort)")
    delete.add_argument("document_id")

    ask = sub.add_parser("ask", help="Ask a question against one or more knowledge bases")
    ask.add_argument("question")
    ask.add_argument("--kb", action="append", required=True, help="Knowledge base id (repeatable)")
    ask.add_argument("--document", action="append", help="Restrict to a document id (repeatable)")
    ask.add_argument("--model", default=None)
    ask.add_argument("--no-stream", action="store_true", help="Request a single non-streamed response")

    for command in (upload, status, delete, ask):
        command.add_argument("--token", required=True, help="Knowledge service API token")
    return parser


_COMMANDS = {
    "upload": _upload,
    "status": _status,
    "delete": _delete,
    "ask": _ask,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    try:
        return asyncio.run(_COMMANDS[args.command](args, settings))
    except SeekRAGError as exc:
        print(f"{exc.kind}: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
