"""Orchestrations for the four on-chain request types.

Handlers raise on failure and never classify; the reliability wrapper decides
whether a failure is retried. Every handler runs while the caller holds
``ctx.worker_lock``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Tuple

from . import cipher
from .context import OracleContext
from .errors import MalformedEventError
from .formatters import (
    create_conversation_file,
    create_message_file,
    create_metadata_file,
    create_search_delta,
)
from .models import ChainEvent, CIDBundle
from .payloads import validate_payload
from .storage import encrypt_and_upload

LOGGER = logging.getLogger(__name__)

Handler = Callable[[OracleContext, Mapping[str, Any], ChainEvent], Awaitable[None]]

METADATA_TITLE_LENGTH = 40
REGENERATION_PROMPT = "Please regenerate your previous response. Make it {instructions}."


def _require(args: Mapping[str, Any], *names: str) -> Tuple[Any, ...]:
    missing = [name for name in names if args.get(name) is None]
    if missing:
        raise MalformedEventError(f"Event is missing arguments: {', '.join(missing)}")
    return tuple(args[name] for name in names)


def _now_ms(ctx: OracleContext) -> int:
    return int(ctx.clock() * 1000)


async def _is_finalized(ctx: OracleContext, answer_message_id: int) -> bool:
    """Best-effort finalization probe; an unreachable node means "not yet"."""

    try:
        return await ctx.chain.is_job_finalized(answer_message_id)
    except Exception as exc:
        LOGGER.warning("Could not check isJobFinalized(%s), proceeding: %s", answer_message_id, exc)
        return False


async def _open_request(
    ctx: OracleContext, event_name: str, args: Mapping[str, Any], conversation_id: int
) -> Tuple[bytes, Any]:
    """Resolve the session key, decrypt the payload and validate it."""

    payload = args.get("payload")
    if payload is None:
        raise MalformedEventError(f"{event_name} event carries no payload")
    session_key = await ctx.session_keys.resolve(payload, args.get("roflEncryptedKey"), conversation_id)
    if ctx.config.is_confidential:
        plaintext = payload
    else:
        plaintext = cipher.decrypt(payload, session_key)
    return session_key, validate_payload(plaintext, event_name)


async def _upload(ctx: OracleContext, document: Dict[str, Any], session_key: bytes) -> str:
    return await encrypt_and_upload(ctx.storage, document, session_key)


async def _submit_answer(ctx: OracleContext, prompt_message_id: int, answer_message_id: int, bundle: CIDBundle) -> None:
    if await ctx.chain.is_job_finalized(answer_message_id):
        LOGGER.info("Skipped: answer %s was finalized while uploading", answer_message_id)
        return
    tx_hash = await ctx.chain.submit_answer(prompt_message_id, answer_message_id, bundle)
    LOGGER.info("Answer %s for prompt %s submitted in %s", answer_message_id, prompt_message_id, tx_hash)


async def _guard_answer(ctx: OracleContext, answer_message_id: int, job: Callable[[], Awaitable[None]]) -> None:
    """Run ``job`` and treat failures on an already-finalized answer as a skip."""

    try:
        await job()
    except Exception as exc:
        if ctx.chain.is_contract_error(exc, "JobAlreadyFinalized"):
            LOGGER.info("Skipped: answer %s reverted with JobAlreadyFinalized", answer_message_id)
            return
        try:
            finalized = await ctx.chain.is_job_finalized(answer_message_id)
        except Exception:
            LOGGER.warning("Could not verify finalization of answer %s after error", answer_message_id)
            finalized = False
        if finalized:
            LOGGER.info("Answer %s failed but is finalized on-chain; treating as done", answer_message_id)
            return
        raise


async def handle_prompt(ctx: OracleContext, args: Mapping[str, Any], event: ChainEvent) -> None:
    user, conversation_id, prompt_id, answer_id = _require(
        args, "user", "conversationId", "promptMessageId", "answerMessageId"
    )
    LOGGER.info("Processing PromptSubmitted for conversation %s in block %s", conversation_id, event.block_number)
    if await _is_finalized(ctx, answer_id):
        LOGGER.info("Skipped: prompt %s is already answered or cancelled", prompt_id)
        return

    async def job() -> None:
        session_key, request = await _open_request(ctx, "PromptSubmitted", args, conversation_id)
        history = await ctx.history.walk(request.previousMessageCID, session_key)
        history.append({"role": "user", "content": request.promptText})
        answer_text = await ctx.ai.query(history, str(conversation_id))

        if await _is_finalized(ctx, answer_id):
            LOGGER.info("Skipped: prompt %s was cancelled during inference", prompt_id)
            return

        now = _now_ms(ctx)
        conv_id = str(conversation_id)
        prompt_doc = create_message_file(
            message_id=str(prompt_id),
            conversation_id=conv_id,
            parent_id=request.previousMessageId or None,
            parent_cid=request.previousMessageCID or None,
            created_at=now,
            role="user",
            content=request.promptText,
        )
        delta_doc = create_search_delta(
            conversation_id=conv_id, message_id=str(prompt_id), user_message=request.promptText
        )
        bundle = CIDBundle()
        if request.isNewConversation:
            await ctx.session_keys.store_key_file(conversation_id, session_key, args.get("roflEncryptedKey"))
            (
                bundle.conversation_cid,
                bundle.metadata_cid,
                bundle.prompt_message_cid,
                bundle.search_delta_cid,
            ) = await asyncio.gather(
                _upload(
                    ctx,
                    create_conversation_file(conversation_id=conv_id, owner_address=str(user), created_at=now),
                    session_key,
                ),
                _upload(
                    ctx,
                    create_metadata_file(
                        title=request.promptText[:METADATA_TITLE_LENGTH], is_deleted=False, last_updated_at=now
                    ),
                    session_key,
                ),
                _upload(ctx, prompt_doc, session_key),
                _upload(ctx, delta_doc, session_key),
            )
        else:
            bundle.prompt_message_cid, bundle.search_delta_cid = await asyncio.gather(
                _upload(ctx, prompt_doc, session_key),
                _upload(ctx, delta_doc, session_key),
            )

        answer_doc = create_message_file(
            message_id=str(answer_id),
            conversation_id=conv_id,
            parent_id=str(prompt_id),
            parent_cid=bundle.prompt_message_cid,
            created_at=now + 1,
            role="assistant",
            content=answer_text,
        )
        bundle.answer_message_cid = await _upload(ctx, answer_doc, session_key)
        await _submit_answer(ctx, prompt_id, answer_id, bundle)

    await _guard_answer(ctx, answer_id, job)


async def handle_regeneration(ctx: OracleContext, args: Mapping[str, Any], event: ChainEvent) -> None:
    conversation_id, prompt_id, answer_id = _require(args, "conversationId", "promptMessageId", "answerMessageId")
    LOGGER.info("Processing RegenerationRequested for prompt %s in block %s", prompt_id, event.block_number)
    if await _is_finalized(ctx, answer_id):
        LOGGER.info("Skipped: regeneration %s is already finalized", answer_id)
        return

    async def job() -> None:
        session_key, request = await _open_request(ctx, "RegenerationRequested", args, conversation_id)
        history = await ctx.history.walk(request.originalAnswerMessageCID, session_key)
        history.append({"role": "user", "content": REGENERATION_PROMPT.format(instructions=request.instructions)})
        answer_text = await ctx.ai.query(history, str(conversation_id))

        if await _is_finalized(ctx, answer_id):
            LOGGER.info("Skipped: regeneration %s was cancelled during inference", answer_id)
            return

        answer_doc = create_message_file(
            message_id=str(answer_id),
            conversation_id=str(conversation_id),
            parent_id=str(prompt_id),
            parent_cid=request.promptMessageCID,
            created_at=_now_ms(ctx),
            role="assistant",
            content=answer_text,
        )
        bundle = CIDBundle(answer_message_cid=await _upload(ctx, answer_doc, session_key))
        await _submit_answer(ctx, prompt_id, answer_id, bundle)

    await _guard_answer(ctx, answer_id, job)


async def handle_branch(ctx: OracleContext, args: Mapping[str, Any], event: ChainEvent) -> None:
    user, original_id, branch_point_id, new_id = _require(
        args, "user", "originalConversationId", "branchPointMessageId", "newConversationId"
    )
    LOGGER.info("Processing BranchRequested for conversation %s in block %s", original_id, event.block_number)
    session_key, request = await _open_request(ctx, "BranchRequested", args, original_id)
    await ctx.session_keys.store_key_file(new_id, session_key, args.get("roflEncryptedKey"))

    now = _now_ms(ctx)
    conversation_cid, metadata_cid = await asyncio.gather(
        _upload(
            ctx,
            create_conversation_file(
                conversation_id=str(new_id),
                owner_address=str(user),
                created_at=now,
                branched_from_conversation_id=str(original_id),
                branched_at_message_id=str(branch_point_id),
            ),
            session_key,
        ),
        _upload(
            ctx,
            create_metadata_file(title=f"Branch of {request.originalTitle}", is_deleted=False, last_updated_at=now),
            session_key,
        ),
    )
    tx_hash = await ctx.chain.submit_branch(user, original_id, branch_point_id, new_id, conversation_cid, metadata_cid)
    LOGGER.info("Branch %s of conversation %s submitted in %s", new_id, original_id, tx_hash)


async def handle_metadata_update(ctx: OracleContext, args: Mapping[str, Any], event: ChainEvent) -> None:
    (conversation_id,) = _require(args, "conversationId")
    LOGGER.info("Processing MetadataUpdateRequested for conversation %s in block %s", conversation_id, event.block_number)
    session_key, request = await _open_request(ctx, "MetadataUpdateRequested", args, conversation_id)
    metadata_cid = await _upload(
        ctx,
        create_metadata_file(title=request.title, is_deleted=request.isDeleted, last_updated_at=_now_ms(ctx)),
        session_key,
    )
    tx_hash = await ctx.chain.submit_metadata(conversation_id, metadata_cid)
    LOGGER.info("Metadata for conversation %s submitted in %s", conversation_id, tx_hash)


HANDLERS: Dict[str, Handler] = {
    "PromptSubmitted": handle_prompt,
    "RegenerationRequested": handle_regeneration,
    "BranchRequested": handle_branch,
    "MetadataUpdateRequested": handle_metadata_update,
}


__all__ = [
    "HANDLERS",
    "Handler",
    "handle_branch",
    "handle_metadata_update",
    "handle_prompt",
    "handle_regeneration",
]
