"""
rtl-export: 컴포넌트 인스턴스 → 파라미터화된 RTL 아티팩트.

레이어:
- domain: 에러, 스키마, 상수
- core: 해시, dedup 캐시, 원자적 쓰기, run log, 프로세스 호출
- templates: 템플릿 DB + 매칭
- render: static 치환, generator 호출
- export: writer, engine, ASIC 스크립트
"""

__version__ = "0.1.0"
