"""Prompts and response schemas for the extraction calls."""

from __future__ import annotations

from typing import Any

# Fields the single-source extraction must always produce.
REQUIRED_TOUR_FIELDS = ("title", "destination", "days", "nights")
# Documented to the model as "empty string when absent" (price: 0 when absent).
OPTIONAL_TOUR_FIELDS = (
    "price",
    "departureDate",
    "highlights",
    "itinerary",
    "inclusions",
    "exclusions",
    "hotels",
    "meals",
    "imageUrl",
    "whatsapp",
    "phone",
)

TOUR_SCHEMA_NAME = "tour_extraction"
CONTACT_SCHEMA_NAME = "contact_info"


def _strict_object(properties: dict[str, Any]) -> dict[str, Any]:
    # Strict structured outputs need every property listed in `required`;
    # optional values are expressed as empty strings / 0 instead of omission.
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _tour_item_properties() -> dict[str, Any]:
    return {
        "title": {"type": "string"},
        "destination": {"type": "string"},
        "days": {"type": "integer"},
        "nights": {"type": "integer"},
        "price": {"type": "number", "description": "Price as a number, 0 if not found"},
        "departureDate": {"type": "string", "description": "YYYY-MM-DD or empty string"},
        "highlights": {"type": "string", "description": "Highlights or empty string"},
        "itinerary": {"type": "string", "description": "Day-by-day itinerary or empty string"},
        "inclusions": {"type": "string", "description": "What's included in the price or empty string"},
        "exclusions": {"type": "string", "description": "What's NOT included or empty string"},
        "hotels": {"type": "string", "description": "Hotel arrangements or empty string"},
        "meals": {"type": "string", "description": "Meal arrangements or empty string"},
        "imageUrl": {"type": "string", "description": "Image URL or empty string"},
        "whatsapp": {"type": "string", "description": "WhatsApp number or empty string"},
        "phone": {"type": "string", "description": "Phone number or empty string"},
    }


def tour_extraction_schema() -> dict[str, Any]:
    return _strict_object({"tours": {"type": "array", "items": _strict_object(_tour_item_properties())}})


def text_batch_schema() -> dict[str, Any]:
    item = {
        "title": {"type": "string"},
        "destination": {"type": "string"},
        "price": {"type": "number"},
        "days": {"type": "integer", "description": "0 if not found"},
        "nights": {"type": "integer", "description": "0 if not found"},
        "highlights": {"type": "string"},
        "whatsapp": {"type": "string"},
        "phone": {"type": "string"},
        "pdfUrl": {"type": "string"},
    }
    return _strict_object(
        {
            "agencyName": {"type": "string", "description": "Agency name taken from the first line of the text"},
            "tours": {"type": "array", "items": _strict_object(item)},
        }
    )


def contact_schema() -> dict[str, Any]:
    return _strict_object(
        {
            "whatsapp": {"type": ["string", "null"], "description": "Digits with optional leading +"},
            "phone": {"type": ["string", "null"], "description": "Digits only"},
        }
    )


TOUR_EXTRACTION_SYSTEM_PROMPT = """You are a tour information extraction assistant. Extract tour package information from various content formats (HTML, page text, PDF text, OCR text) and return structured JSON data.

IMPORTANT:
- The content may come from OCR (image-to-text), so formatting might be imperfect
- Look for tour information even if the text structure is messy
- Be flexible with date and number formats

For each tour found, extract:

Required:
- title: Tour title/name
- destination: Destination country/city
- days: Number of days (integer)
- nights: Number of nights (integer)

Optional (use an empty string "" when not found, never null):
- price: Price in HKD as a number without currency symbol (0 when not found)
- departureDate: Departure date, ISO format YYYY-MM-DD
- highlights: Tour highlights, key attractions, special activities
- itinerary: Detailed day-by-day itinerary
- inclusions: What's included in the price (flights, hotels, meals, tickets...)
- exclusions: What's NOT included (visa fees, tips, optional activities...)
- hotels: Hotel arrangements (names, star ratings, locations)
- meals: Meal arrangements
- imageUrl: Image URL
- whatsapp: WhatsApp contact number
- phone: Phone contact number

Return only a JSON object of the form {"tours": [...]}, no prose. If no tours are found, return {"tours": []}."""


TEXT_BATCH_SYSTEM_PROMPT = """你是一個旅行團資訊提取助手。從用戶提供的文字中提取旅行團資訊並返回結構化 JSON 數據。

重要規則：
1. 文字的第一行是旅行社名稱，請提取並返回在 agencyName 欄位
2. 最多提取 {max_tours} 個旅行團資訊

對於每個找到的旅行團，提取以下資訊：

必填欄位：
- title: 旅行團標題/名稱
- destination: 目的地國家/城市
- price: 價格（只要數字，例如 31998）

可選欄位（如果文字中有提到則填寫，沒有則留空字符串 ""，天數/晚數沒有則填 0）：
- days: 天數（整數）
- nights: 晚數（整數）
- highlights: 行程亮點
- whatsapp: WhatsApp 聯繫號碼
- phone: 電話聯繫號碼
- pdfUrl: PDF 鏈結

返回格式：
{{"agencyName": "旅行社名稱（從第一行提取）", "tours": [...]}}

如果沒有找到旅行團，返回 {{"agencyName": "第一行文字", "tours": []}}。"""


CONTACT_SYSTEM_PROMPT = """你是一個專業的聯絡方式提取助手。從提供的文本中提取 WhatsApp 號碼和電話號碼。

規則：
1. 香港電話號碼通常是 8 位數字（例如：2123 4567、9123 4567）
2. WhatsApp 號碼通常包含國際區號（例如：+852 9123 4567、852-91234567）
3. 如果找到多個號碼，優先選擇標註為「WhatsApp」或「查詢」的號碼
4. 移除所有空格、連字符等格式字符，只保留數字和開頭的 + 號
5. 如果找不到對應的號碼，返回 null

返回 JSON 格式：{"whatsapp": "號碼或null", "phone": "號碼或null"}"""


OCR_SYSTEM_PROMPT = (
    "You are a helpful assistant that extracts text from images. Extract all visible text from the image, "
    "preserving the layout and structure as much as possible."
)
OCR_USER_PROMPT = (
    "Please extract all text from this image. Include tour titles, destinations, prices, dates, "
    "and any other relevant information."
)


def tour_extraction_messages(content: str, source_type: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": TOUR_EXTRACTION_SYSTEM_PROMPT},
        {"role": "user", "content": f"Extract tour information from this content ({source_type}):\n\n{content}"},
    ]


def text_batch_messages(text: str, max_tours: int) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": TEXT_BATCH_SYSTEM_PROMPT.format(max_tours=max_tours)},
        {"role": "user", "content": f"從以下文字中提取旅行團資訊：\n\n{text}"},
    ]


def contact_messages(text: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": CONTACT_SYSTEM_PROMPT},
        {"role": "user", "content": f"請從以下內容中提取 WhatsApp 號碼和電話號碼：\n\n{text}"},
    ]


def ocr_messages(image_data_url: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": OCR_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": OCR_USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image_data_url, "detail": "high"}},
            ],
        },
    ]
