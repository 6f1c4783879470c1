# commute_eta/subway_stations.py
"""
수도권 지하철 노선별 역 순서 정의

각 노선의 역은 backward 종점 → forward 종점 순서로 저장한다.
새 노선을 추가할 때는 SUBWAY_LINES 에 추가한다.
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class LineDirections(BaseModel):
    """API updnLine 값과 매칭되는 방향 라벨"""
    forward: str   # 인덱스 증가 방향 (예: "하행", "외선")
    backward: str  # 인덱스 감소 방향 (예: "상행", "내선")


class BranchConfig(BaseModel):
    branch_point: str    # 본선 위의 분기역
    stations: List[str]  # 분기점 다음 역부터 순서대로


class SubwayLineConfig(BaseModel):
    """노선별 설정"""
    name: str
    type: Literal["linear", "circular"] = "linear"
    directions: LineDirections = LineDirections(forward="하행", backward="상행")
    stations: List[str]
    branches: List[BranchConfig] = []


CIRCULAR_DIRECTIONS = LineDirections(forward="외선", backward="내선")


# 노선 정의 (키: 실시간 API subwayId)
SUBWAY_LINES: Dict[str, SubwayLineConfig] = {
    # ===== 1호선: 소요산 ↔ 인천 / 신창 / 서동탄 / 광명 =====
    "1001": SubwayLineConfig(
        name="1호선",
        stations=[
            # 연천 연장 구간
            "연천", "전곡",
            # 소요산 ~ 구로
            "소요산", "동두천", "보산", "동두천중앙", "지행", "덕정", "덕계",
            "양주", "녹양", "가능", "의정부", "회룡", "망월사", "도봉산",
            "도봉", "방학", "창동", "녹천", "월계", "광운대", "석계",
            "신이문", "외대앞", "회기", "청량리", "제기동", "신설동", "동묘앞",
            "동대문", "종로5가", "종로3가", "종각", "시청", "서울역",
            "남영", "용산", "노량진", "대방", "신길", "영등포", "신도림", "구로",
        ],
        branches=[
            # 경인선 (인천 방면)
            BranchConfig(branch_point="구로", stations=[
                "구일", "개봉", "오류동", "온수", "역곡", "소사", "부천",
                "중동", "송내", "부개", "부평", "백운", "동암", "간석",
                "주안", "도화", "제물포", "도원", "동인천", "인천",
            ]),
            # 경부선·장항선 (신창 방면)
            BranchConfig(branch_point="구로", stations=[
                "가산디지털단지", "독산", "금천구청", "석수", "관악", "안양",
                "명학", "금정", "군포", "당정", "의왕", "성균관대", "화서",
                "수원", "세류", "병점", "세마", "오산대", "오산", "진위",
                "송탄", "서정리", "평택지제", "평택", "성환", "직산", "두정",
                "천안", "봉명", "쌍용", "아산", "배방", "온양온천", "신창",
            ]),
            BranchConfig(branch_point="병점", stations=["서동탄"]),
            BranchConfig(branch_point="금천구청", stations=["광명"]),
        ],
    ),
    # ===== 2호선: 순환선 + 성수지선 + 신정지선 =====
    # 외선 = 시계방향 (리스트 순서), 내선 = 반시계방향
    "1002": SubwayLineConfig(
        name="2호선",
        type="circular",
        directions=CIRCULAR_DIRECTIONS,
        stations=[
            "시청", "을지로입구", "을지로3가", "을지로4가", "동대문역사문화공원",
            "신당", "상왕십리", "왕십리", "한양대", "뚝섬", "성수",
            "건대입구", "구의", "강변", "잠실나루", "잠실", "잠실새내",
            "종합운동장", "삼성", "선릉", "역삼", "강남", "교대", "서초",
            "방배", "사당", "낙성대", "서울대입구", "봉천", "신림", "신대방",
            "구로디지털단지", "대림", "신도림", "문래", "영등포구청", "당산",
            "합정", "홍대입구", "신촌", "이대", "아현", "충정로",
        ],
        branches=[
            BranchConfig(branch_point="성수", stations=["용답", "신답", "용두", "신설동"]),
            BranchConfig(branch_point="신도림", stations=["도림천", "양천구청", "신정네거리", "까치산"]),
        ],
    ),
    # ===== 3호선: 대화 ↔ 오금 =====
    "1003": SubwayLineConfig(
        name="3호선",
        stations=[
            "대화", "주엽", "정발산", "마두", "백석", "대곡", "화정", "원당",
            "원흥", "삼송", "지축", "구파발", "연신내", "불광", "녹번", "홍제",
            "무악재", "독립문", "경복궁", "안국", "종로3가", "을지로3가",
            "충무로", "동대입구", "약수", "금호", "옥수", "압구정", "신사",
            "잠원", "고속터미널", "교대", "남부터미널", "양재", "매봉", "도곡",
            "대치", "학여울", "대청", "일원", "수서", "가락시장", "경찰병원", "오금",
        ],
    ),
    # ===== 4호선: 진접 ↔ 오이도 =====
    "1004": SubwayLineConfig(
        name="4호선",
        stations=[
            "진접", "오남", "별내별가람",
            "당고개", "상계", "노원", "창동", "쌍문", "수유", "미아",
            "미아사거리", "길음", "성신여대입구", "한성대입구", "혜화",
            "동대문", "동대문역사문화공원", "충무로", "명동", "회현", "서울역",
            "숙대입구", "삼각지", "신용산", "이촌", "동작", "총신대입구(이수)", "사당",
            "남태령", "선바위", "경마공원", "대공원", "과천", "정부과천청사",
            "인덕원", "평촌", "범계", "금정", "산본", "수리산", "대야미",
            "반월", "상록수", "한대앞", "중앙", "고잔", "초지", "안산",
            "신길온천", "정왕", "오이도",
        ],
    ),
    # ===== 5호선: 방화 ↔ 하남검단산 (+ 마천지선) =====
    "1005": SubwayLineConfig(
        name="5호선",
        stations=[
            "방화", "개화산", "김포공항", "송정", "마곡", "발산", "우장산",
            "화곡", "까치산", "신정", "목동", "오목교", "양평", "영등포구청",
            "영등포시장", "신길", "여의도", "여의나루", "마포", "공덕", "애오개",
            "충정로", "서대문", "광화문", "종로3가", "을지로4가",
            "동대문역사문화공원", "청구", "신금호", "행당", "왕십리", "마장",
            "답십리", "장한평", "군자", "아차산", "광나루", "천호", "강동",
            "길동", "굽은다리", "명일", "고덕", "상일동", "강일", "미사",
            "하남풍산", "하남시청", "하남검단산",
        ],
        branches=[
            BranchConfig(branch_point="강동", stations=[
                "둔촌동", "올림픽공원", "방이", "오금", "개롱", "거여", "마천",
            ]),
        ],
    ),
    # ===== 6호선: 응암순환 ↔ 신내 =====
    "1006": SubwayLineConfig(
        name="6호선",
        stations=[
            # 응암순환 구간
            "역촌", "불광", "독바위", "연신내", "구산",
            "응암", "새절", "증산", "디지털미디어시티", "월드컵경기장",
            "마포구청", "망원", "합정", "상수", "광흥창", "대흥", "공덕",
            "효창공원앞", "삼각지", "녹사평", "이태원", "한강진", "버티고개",
            "약수", "청구", "신당", "동묘앞", "창신", "보문", "안암", "고려대",
            "월곡", "상월곡", "돌곶이", "석계", "태릉입구", "화랑대", "봉화산", "신내",
        ],
    ),
    # ===== 7호선: 장암 ↔ 석남 =====
    "1007": SubwayLineConfig(
        name="7호선",
        stations=[
            "장암", "도봉산", "수락산", "마들", "노원", "중계", "하계",
            "공릉", "태릉입구", "먹골", "중화", "상봉", "면목", "사가정",
            "용마산", "중곡", "군자", "어린이대공원", "건대입구", "뚝섬유원지",
            "청담", "강남구청", "학동", "논현", "반포", "고속터미널", "내방",
            "이수", "남성", "숭실대입구", "상도", "장승배기", "신대방삼거리",
            "보라매", "신풍", "대림", "남구로", "가산디지털단지", "철산",
            "광명사거리", "천왕", "온수", "까치울", "부천종합운동장", "춘의",
            "신중동", "부천시청", "상동", "삼산체육관", "굴포천", "부평구청",
            "산곡", "석남",
        ],
    ),
    # ===== 8호선: 암사 ↔ 모란 =====
    "1008": SubwayLineConfig(
        name="8호선",
        stations=[
            "암사", "천호", "강동구청", "몽촌토성", "잠실", "석촌",
            "송파", "가락시장", "문정", "장지", "복정", "산성", "남한산성입구",
            "단대오거리", "신흥", "수진", "모란",
        ],
    ),
    # ===== 9호선: 개화 ↔ 중앙보훈병원 =====
    "1009": SubwayLineConfig(
        name="9호선",
        stations=[
            "개화", "김포공항", "공항시장", "신방화", "마곡나루", "양천향교",
            "가양", "증미", "등촌", "염창", "신목동", "선유도", "당산",
            "국회의사당", "여의도", "샛강", "노량진", "노들", "흑석", "동작",
            "구반포", "신반포", "고속터미널", "사평", "신논현", "언주",
            "선정릉", "삼성중앙", "봉은사", "종합운동장", "삼전", "석촌고분",
            "석촌", "송파나루", "한성백제", "올림픽공원", "둔촌오륜", "중앙보훈병원",
        ],
    ),
    # ===== 경의중앙선: 문산 ↔ 지평 =====
    "1063": SubwayLineConfig(
        name="경의중앙선",
        stations=[
            "문산", "파주", "월롱", "금촌", "금릉", "운정", "야당", "탄현",
            "일산", "풍산", "백마", "곡산", "대곡", "능곡", "행신", "강매",
            "화전", "수색", "디지털미디어시티", "가좌", "홍대입구", "서강대",
            "공덕", "효창공원앞", "용산", "이촌", "서빙고", "한남", "옥수",
            "응봉", "왕십리", "청량리", "회기", "중랑", "상봉", "망우",
            "양원", "구리", "도농", "양정", "덕소", "도심", "팔당",
            "운길산", "양수", "신원", "국수", "아신", "오빈", "양평",
            "원덕", "용문", "지평",
        ],
    ),
    # ===== 공항철도: 서울역 ↔ 인천공항2터미널 =====
    "1065": SubwayLineConfig(
        name="공항철도",
        stations=[
            "서울역", "공덕", "홍대입구", "디지털미디어시티", "마곡나루",
            "김포공항", "계양", "검암", "청라국제도시", "영종", "운서",
            "공항화물청사", "인천공항1터미널", "인천공항2터미널",
        ],
    ),
    # ===== 경춘선: 청량리 ↔ 춘천 =====
    "1067": SubwayLineConfig(
        name="경춘선",
        stations=[
            "청량리", "회기", "중랑", "상봉", "망우", "신내", "갈매", "별내",
            "퇴계원", "사릉", "금곡", "평내호평", "천마산", "마석", "대성리",
            "청평", "상천", "가평", "굴봉산", "백양리", "강촌", "김유정",
            "남춘천", "춘천",
        ],
    ),
    # ===== 수인분당선: 청량리 ↔ 인천 =====
    "1075": SubwayLineConfig(
        name="수인분당선",
        stations=[
            "청량리", "왕십리", "서울숲", "압구정로데오", "강남구청", "선정릉",
            "선릉", "한티", "도곡", "구룡", "개포동", "대모산입구", "수서",
            "복정", "가천대", "태평", "모란", "야탑", "이매", "서현", "수내",
            "정자", "미금", "오리", "죽전", "보정", "구성", "신갈", "기흥",
            "상갈", "청명", "영통", "망포", "매탄권선", "수원시청", "매교",
            "수원", "고색", "오목천", "어천", "야목", "사리", "한대앞",
            "중앙", "고잔", "초지", "원인재", "연수", "송도", "인하대",
            "숭의", "신포", "인천",
        ],
    ),
    # ===== 신분당선: 신사 ↔ 광교 =====
    "1077": SubwayLineConfig(
        name="신분당선",
        stations=[
            "신사", "논현", "신논현", "강남", "양재", "양재시민의숲",
            "청계산입구", "판교", "정자", "미금", "동천", "수지구청",
            "성복", "상현", "광교중앙", "광교",
        ],
    ),
    # ===== 우이신설경전철: 북한산우이 ↔ 신설동 =====
    "1092": SubwayLineConfig(
        name="우이신설경전철",
        stations=[
            "북한산우이", "솔밭공원", "4.19민주묘지", "가오리", "화계",
            "삼양", "삼양사거리", "솔샘", "북한산보국문", "정릉",
            "성신여대입구", "보문", "신설동",
        ],
    ),
    # ===== 서해선: 소사 ↔ 원시 =====
    "1093": SubwayLineConfig(
        name="서해선",
        stations=[
            "소사", "소새울", "시흥대야", "신천", "신현", "시흥시청",
            "시흥능곡", "달미", "선부", "초지", "원곡", "원시",
        ],
    ),
    # ===== 경강선: 판교 ↔ 여주 =====
    "1081": SubwayLineConfig(
        name="경강선",
        stations=[
            "판교", "이매", "삼동", "경기광주", "초월", "곤지암",
            "신둔도예촌", "이천", "부발", "세종대왕릉", "여주",
        ],
    ),
    # ===== 신림선: 샛강 ↔ 관악산 =====
    "1094": SubwayLineConfig(
        name="신림선",
        stations=[
            "샛강", "대방", "서울지방병무청", "보라매", "보라매공원",
            "보라매병원", "당곡", "신림", "서원", "서울대벤처타운", "관악산",
        ],
    ),
    # ===== GTX-A: 운정중앙 ↔ 동탄 =====
    "1032": SubwayLineConfig(
        name="GTX-A",
        stations=[
            "운정중앙", "킨텍스", "대곡", "연신내", "서울역",
            "삼성", "수서", "성남", "용인", "동탄",
        ],
    ),
}

# 역 순서 데이터가 없는 노선의 표시 이름
EXTRA_LINE_NAMES: Dict[str, str] = {
    "1091": "자기부상",
    "1071": "인천1호선",
}


def get_line_config(line_id: str) -> Optional[SubwayLineConfig]:
    """
    subwayId 로 노선 설정을 가져온다.

    Returns:
        SubwayLineConfig or None (미지원 노선)
    """
    return SUBWAY_LINES.get(line_id)


def get_subway_line_name(line_id: str) -> str:
    """subwayId → 노선명 ("1002" → "2호선")"""
    conf = get_line_config(line_id)
    if conf:
        return conf.name
    return EXTRA_LINE_NAMES.get(line_id, f"노선 {line_id}")
