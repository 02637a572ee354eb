"""Operations (scan, classify, transfer, legacy pull, conflict, delete)"""
from .scanner import LocalConversation, scan_local, scan_conversation, extract_title
from .classify import Action, Decision, classify, classify_conversation, diff_files
from .transfer import TransferPipeline, TransferStats, object_path

__all__ = [
    "LocalConversation", "scan_local", "scan_conversation", "extract_title",
    "Action", "Decision", "classify", "classify_conversation", "diff_files",
    "TransferPipeline", "TransferStats", "object_path",
]
