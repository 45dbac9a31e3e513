"""トピック / サービスカテゴリ文字列 → 固定タクソノミーへの写像。

評価順: 完全一致テーブル → 部分一致ルール（上から順に、最初に一致したもの）→ 既定値。
ルールは「needles が全て含まれていれば一致」。個別ドメインのルールを汎用ルールより上に置く。
"""

NOTICE_CATEGORY = "plan-for-change"

# --- Intune（週単位ページの h3 トピック） ---
TOPIC_DEFAULT = "device-management"

TOPIC_EXACT = {
    "app management": "app-management",
    "device configuration": "device-configuration",
    "device management": "device-management",
    "device security": "device-security",
    "intune apps": "intune-apps",
    "monitor and troubleshoot": "monitor-troubleshoot",
    "microsoft intune suite": "intune-suite",
}

TOPIC_RULES = (
    (("app", "management"), "app-management"),
    (("device", "configuration"), "device-configuration"),
    (("device", "management"), "device-management"),
    (("device", "security"), "device-security"),
    (("intune", "apps"), "intune-apps"),
    (("monitor",), "monitor-troubleshoot"),
    (("troubleshoot",), "monitor-troubleshoot"),
    (("microsoft", "intune", "suite"), "intune-suite"),
    # 汎用
    (("app",), "app-management"),
    (("device",), "device-management"),
    (("security",), "device-security"),
    (("configuration",), "device-configuration"),
    (("policy",), "device-configuration"),
)

# --- Entra（"Service category:" の値） ---
SERVICE_DEFAULT = "identity-management"

SERVICE_EXACT = {
    "conditional access": "conditional-access",
    "mfa": "authentication",
    "authentications (logins)": "authentication",
    "user authentication": "authentication",
    "identity governance": "identity-governance",
    "entitlement management": "identity-governance",
    "access reviews": "identity-governance",
    "lifecycle workflows": "identity-governance",
    "identity protection": "identity-protection",
    "enterprise apps": "applications",
    "app proxy": "applications",
    "app provisioning": "provisioning",
    "provisioning": "provisioning",
    "b2b/b2c": "external-identities",
    "external identities": "external-identities",
    "reporting": "monitoring-reporting",
    "audit": "monitoring-reporting",
    "device registration and management": "devices",
    "user management": "user-management",
    "group management": "user-management",
    "microsoft entra connect": "hybrid-identity",
    "microsoft entra connect cloud sync": "hybrid-identity",
}

SERVICE_RULES = (
    (("conditional access",), "conditional-access"),
    (("authentication",), "authentication"),
    (("mfa",), "authentication"),
    (("passwordless",), "authentication"),
    (("passkey",), "authentication"),
    (("governance",), "identity-governance"),
    (("entitlement",), "identity-governance"),
    (("access review",), "identity-governance"),
    (("lifecycle",), "identity-governance"),
    (("identity protection",), "identity-protection"),
    (("risk",), "identity-protection"),
    (("provisioning",), "provisioning"),
    (("b2b",), "external-identities"),
    (("b2c",), "external-identities"),
    (("external",), "external-identities"),
    (("connect",), "hybrid-identity"),
    (("sync",), "hybrid-identity"),
    (("hybrid",), "hybrid-identity"),
    # 汎用
    (("report",), "monitoring-reporting"),
    (("audit",), "monitoring-reporting"),
    (("monitor",), "monitoring-reporting"),
    (("logs",), "monitoring-reporting"),
    (("device",), "devices"),
    (("app",), "applications"),
    (("sso",), "applications"),
    (("user",), "user-management"),
    (("group",), "user-management"),
)


def match_category(text: str, exact: dict, rules, default: str) -> str:
    key = " ".join((text or "").lower().split())
    if not key:
        return default
    if key in exact:
        return exact[key]
    for needles, category in rules:
        if all(n in key for n in needles):
            return category
    return default


def topic_category(topic_text: str) -> str:
    return match_category(topic_text, TOPIC_EXACT, TOPIC_RULES, TOPIC_DEFAULT)


def service_category(category_text: str) -> str:
    return match_category(category_text, SERVICE_EXACT, SERVICE_RULES, SERVICE_DEFAULT)
