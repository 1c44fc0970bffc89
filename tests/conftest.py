import datetime
import io
import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).parent.parent))

from threatboard.models import LogKind, LogTable, MatchStrategy, Threat


def build_workbook(sheets):
    """xlsx bytes from {sheet name: [header row, data rows...]}"""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
    return buf.getvalue()


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def ransomware_threat():
    return Threat(id=1, title="랜섬웨어 공격 증가", source="보안뉴스", date="2025-03-05")


@pytest.fixture
def keyword_table():
    def _make(kind, rows, has_count_column=True):
        return LogTable(
            kind=kind,
            strategy=MatchStrategy.KEYWORD,
            rows=list(rows),
            sheet_name=kind.value,
            has_count_column=has_count_column,
        )
    return _make


@pytest.fixture
def title_table():
    def _make(kind, rows, has_count_column=True):
        return LogTable(
            kind=kind,
            strategy=MatchStrategy.TITLE,
            rows=list(rows),
            sheet_name=kind.value,
            has_count_column=has_count_column,
        )
    return _make


@pytest.fixture
def labeled_workbook(make_workbook):
    """Workbook in the article-title layout, one article with NDR and WAF hits."""
    return make_workbook({
        "뉴스기사": [
            ["제목", "출처", "날짜", "본문", "태그"],
            ["랜섬웨어 공격 증가", "보안뉴스", datetime.datetime(2025, 3, 5), "제조업 대상 공격", "랜섬웨어, 공격"],
            ["국세청 사칭 피싱 메일 유포", "데일리시큐", "2025-03-04", "환급 사칭", "피싱"],
        ],
        "스팸스나이퍼": [
            ["기사명", "시간", "발신자", "메일제목", "수신자", "수신건수", "조치"],
            ["국세청 사칭 피싱 메일", "2025-03-04 09:10", "noreply@nts-refund.com", "[국세청] 환급 안내", "kim@corp.local", 3, ""],
            ["국세청 사칭 피싱 메일", "2025-03-04 09:12", "noreply@nts-refund.com", "[국세청] 환급금 조회", "lee@corp.local", 2, ""],
        ],
        "NDR로그": [
            ["기사명", "NDR_RuleName", "소스IP", "대상IP", "탐지유형", "클라이언트IP", "서버IP", "탐지근거", "조치", "이벤트건수"],
            ["랜섬웨어 공격 증가", "Ransom C2 Beacon", "10.0.3.15", "185.220.101.4", "C2", "", "", "알려진 C2 IP", "", 4],
        ],
        "웹방화벽로그": [
            ["기사명", "클라이언트IP", "서버IP", "탐지근거", "조치", "이벤트건수"],
            ["랜섬웨어 공격 증가", "203.0.113.7", "10.0.1.20", "악성 업로드", "차단", 3],
        ],
        "메모": [["무시되는 시트"]],
    })


@pytest.fixture
def asset_workbook(make_workbook):
    """Inventory with a banner row above the header and one skipped row."""
    return make_workbook({
        "요약": [["자산 요약 시트"]],
        "대상 시스템": [
            ["정보자산 현황"],
            ["구분", "자산정보", "IP", "MAC", "호스트명", "OS 버전", "관리부서", "운영 담당자",
             "상태", "위치", "EDR", "EPS", "DLP", "DRM", "NAC", "PMS"],
            ["it", "서버", "10.0.0.5", "00:1A:2B:3C:4D:5E", "web-01", "Ubuntu 22.04", "정보보호팀",
             "김보안", None, "본관 3층", "O", "O", "X", None, "Y", 1],
            ["OT", None, "10.20.0.7", None, "plc-07", None, "생산기술팀", None,
             "점검중", "공장동", None, None, None, None, None, None],
            ["기타", "PC", None, None, "desk-12", "Windows 11", "총무팀", None,
             None, None, "o", "x", None, None, None, None],
            ["IT", "서버", None, None, None, "CentOS 7", None, None,
             None, None, None, None, None, None, None, None],
        ],
    })
