"""Minimal LSP server for OSML, diagnostics only."""

from __future__ import annotations

from lsprotocol.types import (
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_OPEN,
    Diagnostic,
    DiagnosticSeverity,
    DidChangeTextDocumentParams,
    DidOpenTextDocumentParams,
    Position,
    PublishDiagnosticsParams,
    Range,
    TextDocumentSyncKind,
)
from pygls.lsp.server import LanguageServer

from osml.errors import OsmlError
from osml.location import SourceRegistry
from osml.logger import CollectingLogger, Message, Severity
from osml.parser import parse_events

server = LanguageServer("osml-lsp", "0.1.0", text_document_sync_kind=TextDocumentSyncKind.Full)

_SEVERITY = {
    Severity.NOTE: DiagnosticSeverity.Information,
    Severity.WARNING: DiagnosticSeverity.Warning,
    Severity.ERROR: DiagnosticSeverity.Error,
    Severity.FATAL_ERROR: DiagnosticSeverity.Error,
}


def _range(msg: Message, registry: SourceRegistry, source_id: int) -> Range:
    loc = msg.location
    if loc is None or not loc.valid or loc.source_id != source_id:
        return Range(start=Position(line=0, character=0), end=Position(line=0, character=0))
    line, col = registry.position(source_id, loc.start)
    end_line, end_col = registry.position(source_id, loc.end)
    return Range(
        start=Position(line=line - 1, character=col - 1),
        end=Position(line=end_line - 1, character=end_col - 1),
    )


def _validate(ls: LanguageServer, uri: str) -> None:
    """Run the OSML pipeline and publish diagnostics."""
    doc = ls.workspace.get_text_document(uri)
    source = doc.source
    filename = uri.rsplit("/", 1)[-1] if "/" in uri else uri

    registry = SourceRegistry()
    source_id = registry.register(filename, source.encode("utf-8"))
    logger = CollectingLogger()
    try:
        parse_events(source, name=filename, logger=logger, registry=registry)
    except OsmlError:
        # Fatal errors are in the logger as well
        pass

    diagnostics = [
        Diagnostic(
            range=_range(msg, registry, source_id),
            message=msg.message,
            severity=_SEVERITY[msg.severity],
            source="osml",
        )
        for msg in logger.messages
        if msg.severity in _SEVERITY
    ]

    ls.text_document_publish_diagnostics(
        PublishDiagnosticsParams(uri=uri, diagnostics=diagnostics)
    )


@server.feature(TEXT_DOCUMENT_DID_OPEN)
def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


@server.feature(TEXT_DOCUMENT_DID_CHANGE)
def did_change(ls: LanguageServer, params: DidChangeTextDocumentParams) -> None:
    _validate(ls, params.text_document.uri)


def main() -> None:
    server.start_io()
