"""Canned replies for the board's chat box."""
from __future__ import annotations

import re
from typing import List

from threatboard.models import DetectionType, IngestionBatch

_MAIL_RE = re.compile(r"피싱|phishing|메일|mail")
_WAF_RE = re.compile(r"웹방화벽|waf|방화벽")
_NDR_RE = re.compile(r"ndr|엔디알")
_SUMMARY_RE = re.compile(r"전체|요약|현황|통계|summary")
_HELP_RE = re.compile(r"도움|help|사용법")

HELP_TEXT = (
    "사용 방법:\n"
    "1. 엑셀 데이터 가져오기로 .xlsx 업로드\n"
    "2. 외부 위협동향 선택 → 기사 본문 표시\n"
    "3. 탐지현황 선택 → 이벤트 상세 표시\n"
    "4. 키워드 질문: 피싱, NDR, 웹방화벽, 전체 요약"
)


def _bullets(lines: List[str]) -> str:
    return "\n".join(f"• {line}" for line in lines)


def auto_reply(batch: IngestionBatch, text: str) -> str:
    """Answer a chat question from the current batch."""
    query = (text or "").strip()
    lower = query.lower()
    if not lower:
        return HELP_TEXT

    if _MAIL_RE.search(lower):
        found = [d for d in batch.detections if d.type is DetectionType.MAIL]
        if not found:
            return "현재 탐지된 메일 관련 위협이 없습니다."
        return f"현재 탐지된 메일 관련 위협 {len(found)}건:\n" + _bullets([d.label for d in found])

    if _WAF_RE.search(lower):
        found = [d for d in batch.detections
                 if d.type in (DetectionType.WAF, DetectionType.NDR_WAF)]
        if not found:
            return "현재 탐지된 웹방화벽 관련 이벤트가 없습니다."
        return f"현재 웹방화벽 관련 탐지 {len(found)}건:\n" + _bullets([d.label for d in found])

    if _NDR_RE.search(lower):
        found = [d for d in batch.detections
                 if d.type in (DetectionType.NDR, DetectionType.NDR_WAF)]
        if not found:
            return "현재 탐지된 NDR 관련 이벤트가 없습니다."
        return f"현재 NDR 관련 탐지 {len(found)}건:\n" + _bullets([d.label for d in found])

    if _SUMMARY_RE.search(lower):
        s = batch.summary()
        return (
            "위협 탐지 현황 요약\n"
            f"• 외부 위협동향: {s['threats']}건\n"
            f"• 총 탐지 이벤트: {s['total_events']}건\n"
            f"• 메일 피싱 유입: {s['mail_events']}건\n"
            f"• 웹방화벽/NDR 차단·탐지: {s['network_events']}건"
        )

    if _HELP_RE.search(lower):
        return HELP_TEXT

    matched = [
        t for t in batch.threats
        if lower in t.title.lower() or any(lower in tag.lower() for tag in t.tags)
    ]
    if matched:
        return f'"{query}" 관련 위협동향 {len(matched)}건:\n' + _bullets(
            [f"{t.title} ({t.source})" for t in matched]
        )

    return f'"{query}"에 대한 정보를 찾지 못했습니다.\n키워드 예시: 피싱, NDR, 웹방화벽, 전체 요약'
