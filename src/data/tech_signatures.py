"""Signatures for detecting a site's platform and third-party tools.

Each signal is matched case-insensitively against the page HTML and the
response header values.
"""

TECH_SIGNATURES: list[dict] = [
    # Platforms
    {"name": "WordPress", "category": "cms", "signals": ["wp-content", "wp-includes", "wp-json"]},
    {"name": "Shopify", "category": "cms", "signals": ["cdn.shopify.com", "shopify.theme"]},
    {"name": "Wix", "category": "cms", "signals": ["wix.com", "wixsite.com", "parastorage.com"]},
    {
        "name": "Squarespace",
        "category": "cms",
        "signals": ["static.squarespace", "squarespace.com"],
    },
    {"name": "Webflow", "category": "cms", "signals": ["wf-page", "webflow.com"]},
    {"name": "Drupal", "category": "cms", "signals": ["/sites/default/", "drupal.settings"]},
    {"name": "Joomla", "category": "cms", "signals": ["/media/jui/", "joomla"]},
    {"name": "Ghost", "category": "cms", "signals": ["ghost.io", "content/themes"]},
    # Analytics
    {
        "name": "Google Analytics",
        "category": "analytics",
        "signals": ["google-analytics.com", "gtag(", "googletagmanager.com"],
    },
    {"name": "Facebook Pixel", "category": "analytics", "signals": ["facebook.com/tr", "fbq("]},
    {"name": "Hotjar", "category": "analytics", "signals": ["static.hotjar.com", "hotjar.com"]},
    {"name": "Mixpanel", "category": "analytics", "signals": ["mixpanel.com", "mixpanel.init"]},
    {"name": "Plausible", "category": "analytics", "signals": ["plausible.io"]},
    # Marketing
    {"name": "HubSpot", "category": "marketing", "signals": ["js.hs-scripts.com", "hbspt"]},
    {
        "name": "Mailchimp",
        "category": "marketing",
        "signals": ["list-manage.com", "chimpstatic.com"],
    },
    {"name": "Klaviyo", "category": "marketing", "signals": ["klaviyo.com", "klaviyo"]},
    {"name": "Marketo", "category": "marketing", "signals": ["munchkin.marketo.net", "mktoforms"]},
    # Chat widgets
    {"name": "Intercom", "category": "chat", "signals": ["widget.intercom.io", "intercomsettings"]},
    {"name": "Drift", "category": "chat", "signals": ["js.driftt.com", "drift.com"]},
    {"name": "Zendesk", "category": "chat", "signals": ["static.zdassets.com", "zopim"]},
    {"name": "Tawk.to", "category": "chat", "signals": ["embed.tawk.to", "tawk.to"]},
    {"name": "LiveChat", "category": "chat", "signals": ["cdn.livechatinc.com", "livechatinc"]},
    {"name": "Crisp", "category": "chat", "signals": ["client.crisp.chat"]},
    {"name": "Tidio", "category": "chat", "signals": ["code.tidio.co", "tidio"]},
    {"name": "Olark", "category": "chat", "signals": ["static.olark.com", "olark"]},
    {"name": "Messenger", "category": "chat", "signals": ["facebook.com/customerchat"]},
    # Frameworks
    {"name": "Next.js", "category": "framework", "signals": ["__next_data__", "_next/static"]},
    {"name": "React", "category": "framework", "signals": ["data-reactroot", "react-dom"]},
    {"name": "Vue.js", "category": "framework", "signals": ["__vue__", "data-v-", "vue.min.js"]},
    {"name": "Angular", "category": "framework", "signals": ["ng-version", "ng-app"]},
    {"name": "Nuxt", "category": "framework", "signals": ["__nuxt", "_nuxt/"]},
    # Payments
    {"name": "Stripe", "category": "payment", "signals": ["js.stripe.com"]},
    {"name": "PayPal", "category": "payment", "signals": ["paypal.com/sdk", "paypalobjects.com"]},
    {"name": "Square", "category": "payment", "signals": ["squareup.com", "web.squarecdn.com"]},
]
