"""Fixed user-facing texts: greeting, fallback answers and error messages."""

from __future__ import annotations

WELCOME_MESSAGE = "أهلاً وسهلاً! أنا مساعدك الطبي التونسي. كيف يمكنني مساعدتك اليوم؟"

# Substituted for a generated answer whenever the upstream call fails.
FALLBACK_MESSAGES: tuple[str, ...] = (
    "عذراً، الخدمة الطبية غير متاحة حالياً. يرجى الاتصال بطبيبك مباشرة أو التوجه إلى مركز صحي.",
    "نظام الاستشارات غير متوفر الآن. للرعاية العاجلة اتصل بالطوارئ على 190.",
    "نعتذر عن عدم تمكننا من تقديم استشارة طبية في الوقت الحالي. يرجى التواصل مع طبيب مختص.",
)

EMPTY_MESSAGE_ERROR = "الرجاء كتابة رسالة."
MESSAGE_TOO_LONG_ERROR = "الرسالة طويلة جداً. الحد الأقصى هو {limit} حرف."
RATE_LIMITED_ERROR = "طلبات كثيرة جداً. يرجى المحاولة مرة أخرى بعد {seconds} ثانية."
MALFORMED_EVENT_ERROR = "طلب غير صالح."
PROCESSING_ERROR = "عذرًا، حدث خطأ في المعالجة. يرجى المحاولة مرة أخرى."
NOT_FOUND_ERROR = "عذرًا، المسار غير موجود."
