import pytest

from threatboard.correlation_engine import (
    aggregate_count,
    build_batch,
    distinct_join,
    merge_detections,
    parse_count,
)
from threatboard.models import (
    DetectionType,
    LogKind,
    MailRow,
    NdrRow,
    Threat,
    WafRow,
)


# -------------------------------------------------------------------
# Counting & detail helpers
# -------------------------------------------------------------------

@pytest.mark.parametrize("value, expected", [
    ("4", 4), (4, 4), ("4.0", 4), ("1,200", 1200),
    ("", None), (None, None), ("abc", None), ("-3", None), ("nan", None),
])
def test_parse_count(value, expected):
    assert parse_count(value) == expected


def test_waf_missing_count_defaults_to_one():
    rows = [WafRow(count="2"), WafRow(count=""), WafRow(count="3")]
    assert aggregate_count(rows, LogKind.WAF) == 6
    assert aggregate_count([WafRow(count="n/a")], LogKind.WAF) == 1


def test_ndr_empty_counts_fall_back_to_row_count():
    assert aggregate_count([NdrRow(count=""), NdrRow(count="")], LogKind.NDR) == 2
    assert aggregate_count([NdrRow(count="4"), NdrRow(count="")], LogKind.NDR) == 4


def test_mail_count_defaults():
    assert aggregate_count([MailRow(count="3"), MailRow(count="x")], LogKind.MAIL) == 3
    assert aggregate_count([MailRow(count=""), MailRow(count="")], LogKind.MAIL) == 0
    # no count column at all: one mail per row
    assert aggregate_count([MailRow(), MailRow()], LogKind.MAIL, has_count_column=False) == 2


def test_distinct_join_keeps_first_seen_order():
    assert distinct_join(["b", "a", "b", "", None, "c", "a"]) == "b, a, c"


def test_distinct_join_only_removes_exact_duplicates():
    assert distinct_join(["a", "A", " a", "a"]) == "a, A,  a"


# -------------------------------------------------------------------
# Keyword strategy
# -------------------------------------------------------------------

def test_end_to_end_ndr_and_waf_merge(ransomware_threat, keyword_table):
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [
            NdrRow(rule_name="랜섬웨어 C2 Beacon", log_source="NDR-01", count="4"),
        ]),
        LogKind.WAF: keyword_table(LogKind.WAF, [
            WafRow(url_domain="공격.example.com", client_ip="203.0.113.7", count="3"),
        ]),
    }
    batch = build_batch([ransomware_threat], tables)

    assert len(batch.detections) == 1
    det = batch.detections[0]
    assert det.type is DetectionType.NDR_WAF
    assert det.threat_id == ransomware_threat.id
    assert det.count == 7
    assert det.action == "탐지/차단"
    assert det.label == "[NDR, 웹방화벽] 랜섬웨어 공격 증가 관련 이벤트 7건 탐지/차단"
    assert det.detail["NDR_RuleName"] == "랜섬웨어 C2 Beacon"
    assert det.detail["웹방화벽_URL/도메인"] == "공격.example.com"
    assert det.detail["웹방화벽_클라이언트IP"] == "203.0.113.7"
    assert det.detail["조치량"] == "NDR 탐지 4건 / 웹방화벽 차단 3건"


def test_detections_follow_mail_ndr_waf_order(keyword_table):
    threats = [
        Threat(id=1, title="랜섬웨어 공격 증가"),
        Threat(id=2, title="Log4j 취약점 악용"),
    ]
    tables = {
        LogKind.WAF: keyword_table(LogKind.WAF, [WafRow(rule_name="Log4j RCE", count="5")]),
        LogKind.NDR: keyword_table(LogKind.NDR, [NdrRow(rule_name="랜섬웨어 C2", count="1")]),
        LogKind.MAIL: keyword_table(
            LogKind.MAIL, [MailRow(subject="랜섬웨어 첨부")], has_count_column=False
        ),
    }
    detections = build_batch(threats, tables).detections

    assert [d.type for d in detections] == [
        DetectionType.MAIL, DetectionType.NDR, DetectionType.WAF,
    ]
    assert [d.id for d in detections] == [1, 2, 3]
    assert [d.threat_id for d in detections] == [1, 1, 2]
    assert detections[0].label == "[메일] 랜섬웨어 공격 증가 관련 메일 1건 유입"
    assert detections[0].action == "유입"
    assert detections[0].detail["조치"] == "스팸 격리"
    assert detections[2].label == "[웹방화벽] Log4j 취약점 악용 관련 이벤트 5건 차단"


def test_mail_never_merges(ransomware_threat, keyword_table):
    tables = {
        LogKind.MAIL: keyword_table(LogKind.MAIL, [MailRow(subject="랜섬웨어", count="2")]),
        LogKind.WAF: keyword_table(LogKind.WAF, [WafRow(basis="랜섬웨어 업로드", count="1")]),
    }
    detections = build_batch([ransomware_threat], tables).detections
    assert [d.type for d in detections] == [DetectionType.MAIL, DetectionType.WAF]
    assert [d.count for d in detections] == [2, 1]


def test_row_matching_several_articles_counts_for_each(keyword_table):
    threats = [Threat(id=1, title="랜섬웨어 확산"), Threat(id=2, title="C2 서버 공격")]
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [NdrRow(rule_name="랜섬웨어 C2", count="2")]),
    }
    batch = build_batch(threats, tables)
    assert [(d.threat_id, d.count) for d in batch.detections] == [(1, 2), (2, 2)]
    assert batch.stats.unmatched["ndr"] == 0


def test_unmatched_rows_are_counted_not_reported(ransomware_threat, keyword_table):
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [
            NdrRow(rule_name="랜섬웨어 C2", count="1"),
            NdrRow(rule_name="Port Scan", count="9"),
        ]),
    }
    batch = build_batch([ransomware_threat], tables)
    assert len(batch.detections) == 1
    assert batch.detections[0].count == 1
    assert batch.stats.matched["ndr"] == 1
    assert batch.stats.unmatched["ndr"] == 1


def test_threat_without_keywords_gets_no_detection(keyword_table):
    threats = [Threat(id=1, title="및 관련 대한"), Threat(id=2, title="랜섬웨어 공격")]
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [NdrRow(rule_name="및 관련 대한 랜섬웨어")]),
        LogKind.WAF: keyword_table(LogKind.WAF, [WafRow(url_domain="관련 대한")]),
    }
    detections = build_batch(threats, tables).detections
    assert all(d.threat_id != 1 for d in detections)


def test_stopword_title_yields_nothing_even_with_overlap(keyword_table):
    threats = [Threat(id=1, title="및 의 관련 대한")]
    tables = {
        LogKind.MAIL: keyword_table(LogKind.MAIL, [MailRow(subject="및 의 관련 대한")]),
        LogKind.NDR: keyword_table(LogKind.NDR, [NdrRow(rule_name="및 의 관련 대한")]),
    }
    assert build_batch(threats, tables).detections == ()


def test_detail_deduplicates_field_values(ransomware_threat, keyword_table):
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [
            NdrRow(rule_name="랜섬웨어 A", src_ip="10.0.0.2", count="1"),
            NdrRow(rule_name="랜섬웨어 B", src_ip="10.0.0.1", count="1"),
            NdrRow(rule_name="랜섬웨어 A", src_ip="10.0.0.2", count="1"),
        ]),
    }
    detail = build_batch([ransomware_threat], tables).detections[0].detail
    assert detail["NDR_RuleName"] == "랜섬웨어 A, 랜섬웨어 B"
    assert detail["소스 IP"] == "10.0.0.2, 10.0.0.1"
    assert detail["매칭이벤트건수"] == "3건"
    assert "대상 IP" not in detail


def test_explicit_action_from_first_row(ransomware_threat, keyword_table):
    tables = {
        LogKind.WAF: keyword_table(LogKind.WAF, [
            WafRow(rule_name="랜섬웨어", action="허용", count="1"),
            WafRow(rule_name="랜섬웨어", action="차단", count="1"),
        ]),
    }
    assert build_batch([ransomware_threat], tables).detections[0].action == "허용"


# -------------------------------------------------------------------
# Title strategy
# -------------------------------------------------------------------

def test_title_groups_resolving_to_one_article_fold(ransomware_threat, title_table):
    tables = {
        LogKind.NDR: title_table(LogKind.NDR, [
            NdrRow(article_title="랜섬웨어 공격", rule_name="R1", count="2"),
            NdrRow(article_title="랜섬웨어 공격 증가", rule_name="R2", count="3"),
            NdrRow(article_title="랜섬웨어 공격", rule_name="R1", count="1"),
        ]),
    }
    detections = build_batch([ransomware_threat], tables).detections
    assert len(detections) == 1
    assert detections[0].count == 6
    assert detections[0].threat_id == 1
    assert detections[0].detail["NDR_RuleName"] == "R1, R2"
    assert detections[0].label == "[NDR] 랜섬웨어 공격 관련 이벤트 6건 탐지"


def test_unresolved_article_keeps_null_threat(ransomware_threat, title_table):
    tables = {
        LogKind.NDR: title_table(LogKind.NDR, [
            NdrRow(article_title="알 수 없는 기사", rule_name="R9", count="2"),
            NdrRow(article_title="", rule_name="R0", count="5"),
        ]),
        LogKind.WAF: title_table(LogKind.WAF, [
            WafRow(article_title="알 수 없는 기사", count="1"),
            WafRow(article_title="또 다른 기사", count="1"),
        ]),
    }
    batch = build_batch([ransomware_threat], tables)

    assert [(d.type, d.threat_id, d.count) for d in batch.detections] == [
        (DetectionType.NDR_WAF, None, 3),
        (DetectionType.WAF, None, 1),
    ]
    assert batch.stats.unmatched == {"ndr": 2, "waf": 2}
    assert batch.stats.strategies == {"ndr": "title", "waf": "title"}


def test_unresolved_waf_merges_into_unresolved_ndr(ransomware_threat, title_table):
    tables = {
        LogKind.NDR: title_table(LogKind.NDR, [
            NdrRow(article_title="기사 A", rule_name="R1", count="2"),
        ]),
        LogKind.WAF: title_table(LogKind.WAF, [
            WafRow(article_title="기사 B", client_ip="203.0.113.9", count="1"),
        ]),
    }
    detections = build_batch([ransomware_threat], tables).detections

    assert [(d.id, d.type, d.threat_id, d.count) for d in detections] == [
        (1, DetectionType.NDR_WAF, None, 3),
    ]
    assert detections[0].detail["기사명"] == "기사 A"
    assert detections[0].detail["웹방화벽_클라이언트IP"] == "203.0.113.9"


def test_unresolved_ndr_records_take_waf_in_order(ransomware_threat, title_table):
    tables = {
        LogKind.NDR: title_table(LogKind.NDR, [
            NdrRow(article_title="기사 A", count="1"),
            NdrRow(article_title="기사 B", count="2"),
        ]),
        LogKind.WAF: title_table(LogKind.WAF, [
            WafRow(article_title="기사 C", count="4"),
        ]),
    }
    detections = build_batch([ransomware_threat], tables).detections
    assert [(d.type, d.count) for d in detections] == [
        (DetectionType.NDR_WAF, 5),
        (DetectionType.NDR, 2),
    ]


# -------------------------------------------------------------------
# Merge step
# -------------------------------------------------------------------

def test_merge_keeps_ndr_id_and_position(keyword_table):
    threats = [Threat(id=1, title="랜섬웨어 확산"), Threat(id=2, title="Log4j 취약점")]
    tables = {
        LogKind.NDR: keyword_table(LogKind.NDR, [
            NdrRow(rule_name="랜섬웨어", count="1"),
            NdrRow(rule_name="Log4j", count="1"),
        ]),
        LogKind.WAF: keyword_table(LogKind.WAF, [WafRow(rule_name="랜섬웨어", count="2")]),
    }
    detections = build_batch(threats, tables).detections
    assert [(d.id, d.type, d.count) for d in detections] == [
        (1, DetectionType.NDR_WAF, 3),
        (2, DetectionType.NDR, 1),
    ]


def test_merge_detections_with_no_candidates():
    assert merge_detections({}) == []
