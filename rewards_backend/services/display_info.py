"""Localized presentation lines attached to resolved surveys."""
from rewards_backend.config import Settings, get_settings
from rewards_backend.schemas.survey import DisplayInfo, PrizeInfo, SurveyDescriptor

_TEXTS = {
    "ru": {
        "untitled": "Опрос",
        "status": "Статус: {status}, Ответов: {count}",
        "prize": "Приз: {amount} сум",
        "bonus": "Дополнительно: {amount} сум",
        "lottery": "Участие в розыгрыше {amount} сум",
    },
    "uz": {
        "untitled": "So'rovnoma",
        "status": "Holat: {status}, Javoblar: {count}",
        "prize": "Sovrin: {amount} so'm",
        "bonus": "Qo'shimcha: {amount} so'm",
        "lottery": "{amount} so'mlik lotereyada ishtirok",
    },
    "en": {
        "untitled": "Survey",
        "status": "Status: {status}, Responses: {count}",
        "prize": "Prize: {amount} sum",
        "bonus": "Bonus: {amount} sum",
        "lottery": "Entry into the {amount} sum lottery",
    },
}


def format_amount(amount: int) -> str:
    """Group thousands with spaces: 3000000 -> '3 000 000'."""
    return f"{amount:,}".replace(",", " ")


def build_prize_info(settings: Settings | None = None) -> PrizeInfo:
    settings = settings or get_settings()
    return PrizeInfo(
        base_prize=settings.survey_base_prize,
        additional_prize=settings.survey_additional_prize,
        lottery_amount=settings.lottery_amount,
        lottery_eligible=settings.lottery_eligible,
    )


def build_display_info(descriptor: SurveyDescriptor, settings: Settings | None = None) -> DisplayInfo:
    """Render title, summary lines and prize for the survey's language."""
    texts = _TEXTS.get(descriptor.language, _TEXTS["en"])
    prize = build_prize_info(settings)
    metadata = descriptor.catalog_metadata

    lines = [
        texts["status"].format(status=metadata.status or "-", count=metadata.submission_count),
        texts["prize"].format(amount=format_amount(prize.base_prize)),
    ]
    if prize.additional_prize:
        lines.append(texts["bonus"].format(amount=format_amount(prize.additional_prize)))
    if prize.lottery_eligible and prize.lottery_amount:
        lines.append(texts["lottery"].format(amount=format_amount(prize.lottery_amount)))

    return DisplayInfo(
        title=descriptor.display_name or texts["untitled"],
        summary_lines=lines,
        prize=prize,
    )
