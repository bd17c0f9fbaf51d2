"""Prompt templates for the billed AI features.

Title optimization prompts ask for three options, one per line, so the reply
can be split into suggestions. The image style map is appended to the
(refined) description before it is sent to the image provider.
"""

from typing import Optional

# =============================================================================
# Title Optimization Prompts
# =============================================================================

TITLE_STYLES = ("professional", "catchy", "simple")

TITLE_SYSTEM_PROMPTS = {
    "professional": (
        "You are a professional title optimization expert. Please optimize the given "
        "blog title to be more professional, attractive, and suitable for technical blogs."
    ),
    "catchy": (
        "You are a viral content creation expert. Please optimize the title to be more "
        "attractive and viral."
    ),
    "simple": (
        "You are a content simplification expert. Please simplify complex titles so "
        "beginners can easily understand them."
    ),
}

TITLE_USER_PROMPT_TEMPLATES = {
    "professional": """Please optimize the following blog title to be more professional and attractive: "{title}"

Requirements:
1. Keep the original meaning
2. Use professional vocabulary
3. Highlight technical points
4. Keep length within 60 characters
5. Provide 3 optimized options, one per line

Optimized titles:""",
    "catchy": """Please optimize the following blog title to be more engaging and likely to go viral: "{title}"

Requirements:
1. Use emotional vocabulary
2. Highlight value and benefits
3. Use numbers and lists
4. Keep length within 60 characters
5. Provide 3 optimized options, one per line

Optimized titles:""",
    "simple": """Please simplify the following blog title for easier understanding: "{title}"

Requirements:
1. Remove professional jargon
2. Use simple and easy-to-understand vocabulary
3. Highlight core concepts
4. Keep length within 60 characters
5. Provide 3 optimized options, one per line
6. Provide only the optimized titles, no explanations

Optimized titles:""",
}

# =============================================================================
# Image Generation Prompts
# =============================================================================

IMAGE_STYLES = ("realistic", "artistic", "anime", "fantasy", "cyberpunk", "minimalist")

IMAGE_STYLE_KEYWORDS = {
    "realistic": "photorealistic, 8k, highly detailed, professional photography, soft lighting",
    "artistic": "digital art, oil painting style, expressive brushstrokes, artistic composition",
    "anime": "anime style, studio ghibli style, vibrant colors, cel shaded, high quality",
    "fantasy": "fantasy art, magical atmosphere, ethereal, dreamlike, intricate details",
    "cyberpunk": "cyberpunk style, neon lights, futuristic city, sci-fi, high tech, synthwave",
    "minimalist": "minimalist design, flat style, clean lines, simple, vector art, less is more",
}

PROMPT_REFINEMENT_SYSTEM_PROMPT = (
    "You are an expert Text-to-Image Prompt Engineer. Your goal is to write a highly "
    "detailed, artistic, and effective prompt for an AI image generator based on the "
    "user's blog title and description. Return ONLY the prompt, no other text."
)

PROMPT_REFINEMENT_TEMPLATE = """Create a prompt for a blog cover image.
Blog Title: "{title}"
Style: {style}
User Description: "{description}"

Requirements:
1. Focus on visual elements, lighting, composition, and texture.
2. Incorporate elements related to the title and description.
3. Ensure the style matches the requested "{style}" style.
4. The output must be English.
5. Keep it under 100 words.
6. Return ONLY the prompt."""


def format_title_prompt(title: str, style: str) -> tuple[str, str]:
    """Build the (system, user) prompt pair for a title style.

    Unknown styles fall back to ``professional``.
    """
    if style not in TITLE_SYSTEM_PROMPTS:
        style = "professional"
    return (
        TITLE_SYSTEM_PROMPTS[style],
        TITLE_USER_PROMPT_TEMPLATES[style].format(title=title),
    )


def format_refinement_prompt(description: str, style: str, title: Optional[str] = None) -> str:
    """Build the user prompt asking the LLM to refine an image description."""
    return PROMPT_REFINEMENT_TEMPLATE.format(
        title=title or "Untitled",
        style=style,
        description=description or "A creative cover image",
    )


def apply_image_style(prompt: str, style: str) -> str:
    """Append the style keywords to an image prompt."""
    keywords = IMAGE_STYLE_KEYWORDS.get(style, "photorealistic")
    return f"{prompt}, {keywords}"
