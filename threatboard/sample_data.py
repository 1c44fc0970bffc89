"""Bundled dataset shown until a workbook has been loaded."""
from __future__ import annotations

from threatboard.correlation_engine import build_batch
from threatboard.models import (
    IngestionBatch,
    LogKind,
    LogTable,
    MailRow,
    MatchStrategy,
    NdrRow,
    Threat,
    WafRow,
)

SAMPLE_THREATS = (
    Threat(
        id=1,
        title="국세청 사칭 피싱 메일 유포",
        source="보안뉴스",
        date="2025-03-04",
        body="국세청을 사칭해 세금 환급을 안내하는 피싱 메일이 대량 유포되고 있다.",
        tags=("피싱", "메일"),
    ),
    Threat(
        id=2,
        title="랜섬웨어 공격 증가",
        source="데일리시큐",
        date="2025-03-05",
        body="제조업을 노린 랜섬웨어 공격이 전년 대비 증가했다.",
        tags=("랜섬웨어",),
    ),
    Threat(
        id=3,
        title="Log4j 취약점 악용 시도 지속",
        source="KISA",
        date="2025-03-06",
        body="Log4j 원격 코드 실행 취약점을 노린 스캐닝이 계속 관측되고 있다.",
        tags=("Log4j", "RCE"),
    ),
)


def _sample_tables():
    return {
        LogKind.MAIL: LogTable(
            kind=LogKind.MAIL,
            strategy=MatchStrategy.KEYWORD,
            sheet_name="스팸스나이퍼",
            rows=[
                MailRow(date="2025-03-04", subject="[국세청] 종합소득세 환급 안내",
                        sender="noreply@nts-refund.com", recipient="kim@corp.local",
                        filter_info="피싱 URL"),
                MailRow(date="2025-03-04", subject="[국세청] 환급금 조회",
                        sender="noreply@nts-refund.com", recipient="lee@corp.local",
                        filter_info="피싱 URL"),
            ],
        ),
        LogKind.NDR: LogTable(
            kind=LogKind.NDR,
            strategy=MatchStrategy.KEYWORD,
            sheet_name="NDR로그",
            has_count_column=True,
            rows=[
                NdrRow(rule_name="랜섬웨어 C2 통신 탐지", log_source="NDR-01",
                       src_ip="10.0.3.15", dst_ip="185.220.101.4",
                       det_type="C2", basis="알려진 C2 IP", count="4"),
                NdrRow(rule_name="Log4j JNDI Lookup", log_source="NDR-02",
                       src_ip="203.0.113.7", dst_ip="10.0.1.20",
                       det_type="Exploit", basis="${jndi:ldap", count="2"),
            ],
        ),
        LogKind.WAF: LogTable(
            kind=LogKind.WAF,
            strategy=MatchStrategy.KEYWORD,
            sheet_name="웹방화벽로그",
            has_count_column=True,
            rows=[
                WafRow(url_domain="shop.corp.local/login", rule_name="Log4j RCE",
                       pattern_name="jndi-ldap", basis="헤더 내 JNDI 문자열",
                       action="차단", count="5", client_ip="203.0.113.7",
                       server_ip="10.0.1.20"),
            ],
        ),
    }


def load_sample_batch() -> IngestionBatch:
    return build_batch(SAMPLE_THREATS, _sample_tables(), source_name="sample")
