"""Moderation policy engine.

Maps a classifier verdict (or Unavailable) plus the submission shape to
a routing action and a fixed user-facing message. decide() has no I/O
and no state: the same inputs always give the same decision.

Decision table (no attachment):

    BLOCK        -> BLOCK      nothing recorded
    HIGH         -> REJECT     flag severity high
    MEDIUM       -> FLAG_MILD  published, flag severity medium
    SAFE         -> ALLOW      published
    Unavailable  -> PENDING    held for manual review

Any attachment routes to PENDING before the table is consulted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from carepath.core.enums import FlagSeverity, ModerationAction, VerdictLevel
from carepath.core.models import ModerationDecision, Unavailable

if TYPE_CHECKING:
    from carepath.core.enums import ContentType
    from carepath.core.models import Verdict

MESSAGE_BLOCKED = "Nội dung chứa ngôn từ không phù hợp và không thể đăng tải."
MESSAGE_REJECTED = (
    "Nội dung cho thấy dấu hiệu cần hỗ trợ khẩn cấp. "
    "Tư vấn viên sẽ sớm liên hệ với bạn, bạn không đơn độc."
)
MESSAGE_MONITORED = (
    "Nội dung đã được đăng. Nếu bạn đang cảm thấy không ổn, "
    "tư vấn viên luôn sẵn sàng lắng nghe."
)
MESSAGE_PUBLISHED = "Nội dung đã được đăng."
MESSAGE_PENDING_ATTACHMENT = (
    "Nội dung có hình ảnh đính kèm nên cần được tư vấn viên xem xét trước khi đăng."
)
MESSAGE_PENDING_UNAVAILABLE = (
    "Hệ thống kiểm duyệt tạm thời không khả dụng. "
    "Nội dung của bạn đã được gửi để tư vấn viên xem xét trước khi đăng."
)

PENDING_REASON_ATTACHMENT = "Content has an attachment and requires manual review"
PENDING_REASON_UNAVAILABLE = "Classifier unavailable: {reason}"

# Single canonical mapping from verdict level to action, severity and message
VERDICT_TABLE: dict[VerdictLevel, tuple[ModerationAction, FlagSeverity | None, str]] = {
    VerdictLevel.BLOCK: (ModerationAction.BLOCK, None, MESSAGE_BLOCKED),
    VerdictLevel.HIGH: (ModerationAction.REJECT, FlagSeverity.HIGH, MESSAGE_REJECTED),
    VerdictLevel.MEDIUM: (ModerationAction.FLAG_MILD, FlagSeverity.MEDIUM, MESSAGE_MONITORED),
    VerdictLevel.SAFE: (ModerationAction.ALLOW, None, MESSAGE_PUBLISHED),
}


def decide(
    verdict: Verdict | None,
    content_type: ContentType,
    has_attachment: bool = False,
) -> ModerationDecision:
    """Decide how a submission is routed.

    Args:
        verdict: Classifier verdict, Unavailable, or None when the
            classifier was skipped because of an attachment
        content_type: Surface the submission came from (all surfaces
            currently share one table)
        has_attachment: Whether the submission carries an attachment

    Returns:
        ModerationDecision with action, message and optional severity
    """
    if has_attachment:
        return ModerationDecision(
            action=ModerationAction.PENDING,
            message=MESSAGE_PENDING_ATTACHMENT,
            pending_reason=PENDING_REASON_ATTACHMENT,
        )

    if verdict is None or isinstance(verdict, Unavailable):
        reason = verdict.reason if verdict is not None else "no verdict"
        return ModerationDecision(
            action=ModerationAction.PENDING,
            message=MESSAGE_PENDING_UNAVAILABLE,
            pending_reason=PENDING_REASON_UNAVAILABLE.format(reason=reason),
        )

    action, severity, message = VERDICT_TABLE[verdict.level]
    return ModerationDecision(action=action, message=message, severity=severity)
