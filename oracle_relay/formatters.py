"""Builders for the JSON documents written to storage."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

_PUNCTUATION = re.compile(r"[.,/#!$%^&*;:{}=\-_`~()]")
_SPACES = re.compile(r"\s{2,}")

STOPWORDS = frozenset({
    "a", "about", "above", "after", "again", "against", "all", "am", "an", "and",
    "any", "are", "as", "at", "be", "because", "been", "before", "being", "below",
    "between", "both", "but", "by", "can", "could", "did", "do", "does", "doing",
    "down", "during", "each", "few", "for", "from", "further", "had", "has", "have",
    "having", "he", "her", "here", "hers", "herself", "him", "himself", "his", "how",
    "i", "if", "in", "into", "is", "it", "its", "itself", "just", "me", "more",
    "most", "my", "myself", "no", "nor", "not", "now", "of", "off", "on", "once",
    "only", "or", "other", "ought", "our", "ours", "ourselves", "out", "over", "own",
    "same", "she", "should", "so", "some", "such", "than", "that", "the", "their",
    "theirs", "them", "themselves", "then", "there", "these", "they", "this", "those",
    "through", "to", "too", "under", "until", "up", "very", "was", "we", "were",
    "what", "when", "where", "which", "while", "who", "whom", "why", "will", "with",
    "would", "you", "your", "yours", "yourself", "yourselves",
})


def create_conversation_file(
    *,
    conversation_id: str,
    owner_address: str,
    created_at: int,
    branched_from_conversation_id: Optional[str] = None,
    branched_at_message_id: Optional[str] = None,
) -> Dict[str, Any]:
    document: Dict[str, Any] = {
        "id": conversation_id,
        "ownerAddress": owner_address,
        "createdAt": created_at,
    }
    if branched_from_conversation_id:
        document["branchedFromConversationId"] = branched_from_conversation_id
    if branched_at_message_id:
        document["branchedAtMessageId"] = branched_at_message_id
    return document


def create_metadata_file(*, title: str, is_deleted: bool, last_updated_at: int) -> Dict[str, Any]:
    return {"title": title, "isDeleted": is_deleted, "lastUpdatedAt": last_updated_at}


def create_message_file(
    *,
    message_id: str,
    conversation_id: str,
    parent_id: Optional[str],
    parent_cid: Optional[str],
    created_at: int,
    role: str,
    content: Optional[str],
    sources: Optional[List[Dict[str, str]]] = None,
    reasoning: Optional[List[Dict[str, str]]] = None,
    reasoning_duration: Optional[float] = None,
) -> Dict[str, Any]:
    """Build a message document.

    ``parentCID`` is the storage address of the previous message and is what
    history reconstruction follows; ``parentId`` is its on-chain id.
    """

    document: Dict[str, Any] = {
        "id": message_id,
        "conversationId": conversation_id,
        "parentId": parent_id,
        "parentCID": parent_cid,
        "createdAt": created_at,
        "role": role,
        "content": content,
    }
    if role == "assistant":
        document["sources"] = list(sources or [])
        document["reasoning"] = list(reasoning or [])
        if reasoning_duration is not None:
            document["reasoningDuration"] = reasoning_duration
    return document


def generate_keywords(content: Optional[str]) -> str:
    """Lower-cased, punctuation-free, stop-word-filtered words of ``content``."""

    if not content:
        return ""
    text = content.lower().replace("\n", " ")
    text = _PUNCTUATION.sub("", text)
    text = _SPACES.sub(" ", text).strip()
    return " ".join(word for word in text.split(" ") if word and word not in STOPWORDS)


def create_search_delta(*, conversation_id: str, message_id: str, user_message: str) -> Dict[str, Any]:
    return {message_id: {"cid": conversation_id, "c": generate_keywords(user_message)}}


__all__ = [
    "STOPWORDS",
    "create_conversation_file",
    "create_message_file",
    "create_metadata_file",
    "create_search_delta",
    "generate_keywords",
]
