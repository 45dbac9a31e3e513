SOURCES = [
  # Intune: 「Week of ...」見出し（h2）→ トピック（h3）→ 個別更新（h4）の週単位レイアウト。
  # 見出しに "(Service release 2507)" が付く週がある。
  {
    "id": "intune",
    "service": "Intune",
    "url": "https://learn.microsoft.com/en-us/intune/intune-service/fundamentals/whats-new",
    "layout": "weekly",
  },
  # Entra: 「July 2025」見出し（h2）配下に表 / 箇条書き / h3 セクションが混在する月単位レイアウト。
  # h3 直後の「Type: / Service category: / Product capability:」行がメタデータ。
  # notice は旧フォーマット互換のため軽量マークアップ（**太字** / [text](url)）で保存する。
  {
    "id": "entra",
    "service": "Entra",
    "url": "https://learn.microsoft.com/en-us/entra/fundamentals/whats-new",
    "layout": "monthly_structured",
    "notice_format": "markdown",
  },
  # Defender: 月見出し（h2）＋フラットな箇条書き。月ごとに1件のダイジェストへ集約する。
  {
    "id": "defender",
    "service": "Defender",
    "url": "https://learn.microsoft.com/en-us/defender-endpoint/whats-new-in-microsoft-defender-endpoint",
    "layout": "monthly_digest",
    "digest_category": "endpoint-security",
  },
]
