"""Localized system notices shown alongside the assistant's replies"""

from nova_bank.config import settings

NOTICES = {
    "en": {
        "greeting": "Hi {name}! I'm Nova, your banking assistant. How can I help you today?",
        "confirmation_required": "Please confirm '{action}' with your passkey.",
        "action_cancelled": "Action cancelled.",
        "chat_error": "Sorry, something went wrong. Please try again.",
        "analyzing_image": "Analyzing image...",
        "ocr_failed": "I couldn't find a recipient in that image. Please try a clearer photo.",
        "ocr_success": "I found a payment of {amount} to {recipient}.",
        "ocr_payment_prompt": "Send {amount} to {recipient}",
        "ocr_error": "Sorry, I couldn't read that image.",
    },
    "es": {
        "greeting": "¡Hola {name}! Soy Nova, tu asistente bancaria. ¿En qué puedo ayudarte hoy?",
        "confirmation_required": "Confirma '{action}' con tu llave de acceso.",
        "action_cancelled": "Acción cancelada.",
        "chat_error": "Lo siento, algo salió mal. Inténtalo de nuevo.",
        "analyzing_image": "Analizando la imagen...",
        "ocr_failed": "No encontré un destinatario en esa imagen. Intenta con una foto más clara.",
        "ocr_success": "Encontré un pago de {amount} para {recipient}.",
        "ocr_payment_prompt": "Enviar {amount} a {recipient}",
        "ocr_error": "Lo siento, no pude leer esa imagen.",
    },
    "th": {
        "greeting": "สวัสดี {name}! ฉันคือ Nova ผู้ช่วยด้านการธนาคารของคุณ วันนี้ให้ช่วยอะไรดี?",
        "confirmation_required": "โปรดยืนยัน '{action}' ด้วยพาสคีย์ของคุณ",
        "action_cancelled": "ยกเลิกการดำเนินการแล้ว",
        "chat_error": "ขออภัย เกิดข้อผิดพลาด โปรดลองอีกครั้ง",
        "analyzing_image": "กำลังวิเคราะห์รูปภาพ...",
        "ocr_failed": "ไม่พบผู้รับในรูปภาพนี้ โปรดลองใช้รูปที่ชัดเจนกว่านี้",
        "ocr_success": "พบการชำระเงิน {amount} ให้ {recipient}",
        "ocr_payment_prompt": "โอน {amount} ให้ {recipient}",
        "ocr_error": "ขออภัย ไม่สามารถอ่านรูปภาพนี้ได้",
    },
    "tl": {
        "greeting": "Kumusta {name}! Ako si Nova, ang iyong banking assistant. Paano kita matutulungan ngayon?",
        "confirmation_required": "Pakikumpirma ang '{action}' gamit ang iyong passkey.",
        "action_cancelled": "Kinansela ang aksyon.",
        "chat_error": "Paumanhin, may nangyaring mali. Pakisubukang muli.",
        "analyzing_image": "Sinusuri ang larawan...",
        "ocr_failed": "Wala akong nakitang tatanggap sa larawang iyon. Subukan ang mas malinaw na larawan.",
        "ocr_success": "May nakita akong bayad na {amount} para kay {recipient}.",
        "ocr_payment_prompt": "Magpadala ng {amount} kay {recipient}",
        "ocr_error": "Paumanhin, hindi ko mabasa ang larawang iyon.",
    },
}


def notice(key: str, language: str, **params) -> str:
    """Notice text in the session language, falling back to the default language"""
    catalog = NOTICES.get(language) or NOTICES[settings.default_language]
    template = catalog.get(key) or NOTICES["en"][key]
    return template.format(**params)
