"""
Input Validation Utilities

Phone handling for provider calls and logs, plus helpers that keep secrets
out of diagnostic output.
"""
import re

_NON_DIGITS = re.compile(r"\D")


class PhoneNumberValidator:
    """Phone number normalization for the WhatsApp provider"""

    @staticmethod
    def digits(phone: str | None) -> str:
        """Keep only the digits of a phone string"""
        return _NON_DIGITS.sub("", phone or "")

    @staticmethod
    def format_for_provider(phone: str, country_code: str = "55") -> str:
        """
        Normalize a phone number to the provider format (country code + digits).

        Numbers already prefixed with the country code are kept; local numbers
        with 10 or 11 digits (DDD + number) get the prefix.

        Args:
            phone: raw phone, with or without punctuation
            country_code: default country code

        Returns:
            Digits-only phone number
        """
        cleaned = PhoneNumberValidator.digits(phone)
        if cleaned.startswith(country_code):
            return cleaned
        if len(cleaned) in (10, 11):
            return country_code + cleaned
        return cleaned

    @staticmethod
    def extract_from_jid(remote_jid: str | None) -> str:
        """'5511999998888@s.whatsapp.net' -> '5511999998888'"""
        if not remote_jid:
            return ""
        return PhoneNumberValidator.digits(remote_jid.split("@", 1)[0])

    @staticmethod
    def is_group_jid(remote_jid: str | None) -> bool:
        return bool(remote_jid) and "@g.us" in remote_jid

    @staticmethod
    def phone_suffix(phone: str, length: int = 8) -> str:
        """Últimos dígitos do telefone, usados para casar contatos com clientes"""
        return PhoneNumberValidator.digits(phone)[-length:]

    @staticmethod
    def mask(phone: str | None) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., 5511*****88)
        """
        cleaned = PhoneNumberValidator.digits(phone)
        if len(cleaned) < 6:
            return "****"
        return f"{cleaned[:4]}{'*' * (len(cleaned) - 6)}{cleaned[-2:]}"


def mask_secret(secret: str | None, visible: int = 4) -> str:
    """Mostra só as pontas de um token: 'abcd…wxyz'"""
    if not secret:
        return ""
    if len(secret) <= visible * 2:
        return "*" * len(secret)
    return f"{secret[:visible]}…{secret[-visible:]}"
