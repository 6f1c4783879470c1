# commute_eta/__init__.py
"""
저장된 통근 경로의 실시간 예상 도착 시간(ETA) 계산 엔진
"""
