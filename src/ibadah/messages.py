from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from ibadah.line_messaging import Message, TextMessage
from ibadah.models import NotificationPreferences
from ibadah.prayer_times import Prayer


HASHTAG = "#IbadahStation"


@dataclass(frozen=True)
class Wisdom:
    arabic: str
    transliteration: str
    meaning_th: str
    source: str
    source_detail: Optional[str] = None


FALLBACK_WISDOM = Wisdom(
    arabic="إِنَّ مَعَ الْعُسْرِ يُسْرًا",
    transliteration="Inna ma'al usri yusra",
    meaning_th="แท้จริงพร้อมกับความยากลำบากนั้นมีความง่ายดาย",
    source="Quran",
    source_detail="Surah Ash-Sharh 94:6",
)


def _on_off(enabled: bool) -> str:
    return "เปิด" if enabled else "ปิด"


@dataclass(frozen=True)
class MessageBuilder:
    """Canned LINE messages; links point at the public site."""

    site_url: str

    @property
    def settings_url(self) -> str:
        return f"{self.site_url}/th/settings/notifications"

    def link_url(self, link_token: Optional[str] = None) -> str:
        if link_token:
            return f"{self.site_url}/line-link?token={link_token}"
        return self.settings_url

    def prayer(self, prayer: Prayer, time: str, location_name: str) -> List[Message]:
        text = (
            f"🕌 ได้เวลาละหมาด{prayer.name_th}แล้ว ({prayer.name_ar})\n\n"
            f"⏰ เวลา: {time}\n"
            f"📍 {location_name}\n\n"
            '"وَأَقِيمُوا الصَّلَاةَ"\n'
            "และจงดำรงการละหมาด\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def morning_adhkar(self) -> List[Message]:
        return [TextMessage(self._adhkar(
            "🌅 อัซการเช้า - Morning Adhkar",
            '"أَصْبَحْنَا وَأَصْبَحَ الْمُلْكُ لِلَّهِ"',
            "เราได้เข้าสู่ยามเช้า และอำนาจทั้งมวลเป็นของอัลลอฮ์",
        ))]

    def evening_adhkar(self) -> List[Message]:
        return [TextMessage(self._adhkar(
            "🌆 อัซการเย็น - Evening Adhkar",
            '"أَمْسَيْنَا وَأَمْسَى الْمُلْكُ لِلَّهِ"',
            "เราได้เข้าสู่ยามเย็น และอำนาจทั้งมวลเป็นของอัลลอฮ์",
        ))]

    def daily_wisdom(self, wisdom: Wisdom) -> List[Message]:
        source = wisdom.source
        if wisdom.source_detail:
            source = f"{wisdom.source} - {wisdom.source_detail}"
        text = (
            "✨ ข้อคิดประจำวัน\n\n"
            f"{wisdom.arabic}\n\n"
            f'"{wisdom.transliteration}"\n\n'
            f"{wisdom.meaning_th}\n\n"
            f"📖 {source}\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def quran_reminder(self) -> List[Message]:
        text = (
            "📖 Quran Reminder\n\n"
            "อย่าลืมอ่านอัลกุรอานวันนี้นะครับ\n\n"
            '"خَيْرُكُمْ مَنْ تَعَلَّمَ الْقُرْآنَ وَعَلَّمَهُ"\n'
            "ผู้ที่ดีที่สุดในหมู่พวกท่าน คือผู้ที่เรียนอัลกุรอานและสอนมัน\n"
            "(หะดีษ บุคอรีย์)\n\n"
            "🔗 อ่านอัลกุรอาน:\n"
            f"{self.site_url}/th/quran\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def welcome(self, display_name: str) -> List[Message]:
        text = (
            f"อัสลามุอะลัยกุม {display_name} 🌙\n\n"
            "ยินดีต้อนรับสู่ Ibadah Station\n\n"
            "เพื่อรับการแจ้งเตือนเวลาละหมาด อัซการเช้าเย็น ข้อคิดประจำวัน "
            "และการอ่านอัลกุรอาน กรุณาลิงก์บัญชีของคุณ:\n\n"
            f"🔗 ลิงก์บัญชี:\n{self.settings_url}\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def account_linked(self, schedule: dict) -> List[Message]:
        text = (
            "✅ ลิงก์บัญชีสำเร็จ!\n\n"
            "บัญชี LINE ของคุณได้เชื่อมต่อกับ Ibadah Station แล้ว\n\n"
            "คุณจะเริ่มได้รับการแจ้งเตือนตามการตั้งค่าของคุณ:\n"
            "🕌 เวลาละหมาด\n"
            f"🌅 อัซการเช้า ({schedule['adhkar_morning']:02d}:00)\n"
            f"🌆 อัซการเย็น ({schedule['adhkar_evening']:02d}:00)\n"
            f"✨ ข้อคิดประจำวัน ({schedule['daily_wisdom']:02d}:00)\n"
            f"📖 เตือนอ่านอัลกุรอาน ({schedule['quran_reminder']:02d}:00)\n\n"
            f"ตั้งค่าการแจ้งเตือนได้ที่:\n{self.settings_url}\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def account_unlinked(self) -> List[Message]:
        text = (
            "🔓 ยกเลิกการลิงก์บัญชีแล้ว\n\n"
            "บัญชี LINE ของคุณได้ยกเลิกการเชื่อมต่อกับ Ibadah Station แล้ว\n\n"
            "คุณจะไม่ได้รับการแจ้งเตือนอีกต่อไป\n\n"
            f"หากต้องการเชื่อมต่อใหม่:\n{self.settings_url}\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def already_linked(self) -> List[Message]:
        return [TextMessage(
            "✅ บัญชีของคุณเชื่อมต่อกับ Ibadah Station แล้ว\n\n"
            f"ตั้งค่าการแจ้งเตือนได้ที่:\n{self.settings_url}"
        )]

    def link_instructions(self, link_token: Optional[str] = None) -> List[Message]:
        return [TextMessage(
            "🔗 ลิงก์บัญชีของคุณกับ Ibadah Station:\n\n"
            f"{self.link_url(link_token)}\n\n"
            'กรุณา login และกดปุ่ม "เชื่อมต่อ LINE"'
        )]

    def not_linked(self) -> List[Message]:
        return [TextMessage("บัญชีของคุณยังไม่ได้เชื่อมต่อกับ Ibadah Station")]

    def status(self, prefs: Optional[NotificationPreferences]) -> List[Message]:
        any_prayer = prefs is not None and any(prayer.is_enabled(prefs) for prayer in Prayer)
        location = (prefs.location_name if prefs is not None else None) or "Bangkok"
        text = (
            "📊 สถานะบัญชีของคุณ\n\n"
            "✅ เชื่อมต่อแล้ว\n\n"
            "การแจ้งเตือน:\n"
            f"🕌 เวลาละหมาด: {_on_off(any_prayer)}\n"
            f"🌅 อัซการเช้า: {_on_off(prefs is not None and prefs.adhkar_morning)}\n"
            f"🌆 อัซการเย็น: {_on_off(prefs is not None and prefs.adhkar_evening)}\n"
            f"✨ ข้อคิดประจำวัน: {_on_off(prefs is not None and prefs.daily_wisdom)}\n"
            f"📖 เตือนอ่านอัลกุรอาน: {_on_off(prefs is not None and prefs.quran_reminder)}\n\n"
            f"📍 พื้นที่: {location}\n\n"
            f"ตั้งค่าการแจ้งเตือน:\n{self.settings_url}"
        )
        return [TextMessage(text)]

    def status_not_linked(self) -> List[Message]:
        return [TextMessage(
            f"❌ บัญชีของคุณยังไม่ได้เชื่อมต่อ\n\nลิงก์บัญชี:\n{self.settings_url}"
        )]

    def help(self) -> List[Message]:
        text = (
            "🌙 Ibadah Station - Help\n\n"
            "คำสั่งที่ใช้ได้:\n"
            "• link / ลิงก์ - เชื่อมต่อบัญชี\n"
            "• unlink / ยกเลิก - ตัดการเชื่อมต่อ\n"
            "• status / สถานะ - ดูสถานะบัญชี\n"
            "• help / ช่วยเหลือ - แสดงข้อความนี้\n\n"
            f"🔗 เว็บไซต์:\n{self.site_url}\n\n"
            f"{HASHTAG}"
        )
        return [TextMessage(text)]

    def unknown_command(self) -> List[Message]:
        return [TextMessage('พิมพ์ "help" หรือ "ช่วยเหลือ" เพื่อดูคำสั่งที่ใช้ได้')]

    def settings_link(self) -> List[Message]:
        return [TextMessage(f"⚙️ ตั้งค่าการแจ้งเตือน:\n{self.settings_url}")]

    def _adhkar(self, title: str, arabic: str, meaning: str) -> str:
        return (
            f"{title}\n\n"
            "สุบหานัลลอฮฺ 33 ครั้ง\n"
            "อัลฮัมดุลิลลาฮฺ 33 ครั้ง\n"
            "อัลลอฮุอักบัร 33 ครั้ง\n\n"
            f"{arabic}\n"
            f"{meaning}\n\n"
            "🔗 ดูอัซการทั้งหมด:\n"
            f"{self.site_url}/th/journey/morning-evening-adhkar\n\n"
            f"{HASHTAG}"
        )
