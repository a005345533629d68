# geomayora/services/remarks.py
import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from geomayora.schemas import LandRecordForm

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

MISSING_KEY_TEXT = "API Key Gemini tidak ditemukan. Harap konfigurasi environment variable."
FAILED_TEXT = "Gagal membuat keterangan otomatis. Silakan isi manual."
EMPTY_TEXT = "Gagal membuat keterangan otomatis."


def build_prompt(form: LandRecordForm) -> str:
    area = f"{form.area:g} m2" if form.area else "-"
    return f"""
Bertindaklah sebagai asisten administrasi pertanahan profesional.
Buatkan "KETERANGAN" yang ringkas, formal, dan jelas untuk formulir permohonan pengukuran tanah berdasarkan data berikut:

- Nama Pemilik: {form.owner_name or '-'}
- Desa: {form.village or '-'}
- Nomor GU: {form.no_gu or '-'}
- Blok: {form.block or '-'}
- Nomor Bidang: {form.plot_number or '-'}
- Luas: {area}
- Status: {form.status.value}
- No Dokumen: {form.document_number or '-'}

Keterangan harus mencakup ringkasan status kelengkapan, lokasi desa, dan tujuan pengukuran. Gunakan Bahasa Indonesia yang baku. Maksimal 2 kalimat.
""".strip()


def _extract_text(data: Dict[str, Any]) -> Optional[str]:
    try:
        parts = data["candidates"][0]["content"]["parts"]
    except (KeyError, IndexError, TypeError):
        return None
    text = "".join(p.get("text", "") for p in parts if isinstance(p, dict)).strip()
    return text or None


async def _post_json(url: str, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
    headers = {"x-goog-api-key": api_key, "Content-Type": "application/json"}
    timeout = aiohttp.ClientTimeout(total=30)
    async with aiohttp.ClientSession(headers=headers, timeout=timeout) as sess:
        async with sess.post(url, json=payload) as r:
            r.raise_for_status()
            return await r.json()


async def generate_remarks(form: LandRecordForm, api_key: Optional[str], model: str = "gemini-2.5-flash") -> str:
    """
    Draft the KETERANGAN text for a partially filled form. Never raises: a
    missing key or a failed call returns a fixed message for the user.
    """
    if not api_key:
        return MISSING_KEY_TEXT

    payload = {"contents": [{"parts": [{"text": build_prompt(form)}]}]}
    try:
        data = await _post_json(GEMINI_URL.format(model=model), payload, api_key)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning("Gemini API error: %s", e)
        return FAILED_TEXT

    return _extract_text(data) or EMPTY_TEXT
