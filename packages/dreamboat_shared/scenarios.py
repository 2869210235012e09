"""
DreamBoat Scenario Catalog

Scenarios the generator can place the subject in, shared by the API
(validation of user choices) and the worker (prompt construction).
"""

# Scenario presets with their prompts
SCENARIOS = {
    "photoshoot": {
        "name": "Photoshoot",
        "description": "Clean studio session with soft, flattering light",
        "prompt": (
            "professional studio photoshoot of the person in the reference photos, "
            "soft key light, seamless neutral backdrop, relaxed confident pose, "
            "sharp focus on the eyes, magazine quality"
        ),
    },
    "white_photoshoot": {
        "name": "White Studio",
        "description": "Bright high-key portrait on a white background",
        "prompt": (
            "high-key portrait of the person in the reference photos, "
            "pure white background, bright even lighting, natural smile, "
            "crisp detail, editorial fashion style"
        ),
    },
    "editorial_photoshoot": {
        "name": "Editorial",
        "description": "Moody editorial shot with styled wardrobe",
        "prompt": (
            "editorial fashion photograph of the person in the reference photos, "
            "styled outfit, directional lighting, subtle film grain, "
            "confident expression, high fashion magazine spread"
        ),
    },
    "professional": {
        "name": "Professional",
        "description": "Polished portrait suitable for a work profile",
        "prompt": (
            "polished professional portrait of the person in the reference photos, "
            "smart casual attire, blurred modern office background, "
            "soft window light, approachable expression"
        ),
    },
    "casual_fitting_room": {
        "name": "Fitting Room",
        "description": "Candid mirror moment trying on an outfit",
        "prompt": (
            "candid photo of the person in the reference photos in a boutique fitting room, "
            "trying on a stylish outfit, warm ambient light, playful natural pose"
        ),
    },
    "hotel_bathroom": {
        "name": "Hotel",
        "description": "Getting ready in a luxury hotel suite",
        "prompt": (
            "the person in the reference photos getting ready in a luxury hotel suite, "
            "marble surfaces, warm lighting, elegant outfit, candid lifestyle photo"
        ),
    },
    "coffee_new": {
        "name": "Coffee Shop",
        "description": "Relaxed moment at a sunny cafe",
        "prompt": (
            "the person in the reference photos sitting in a sunny specialty coffee shop, "
            "holding a latte, warm morning light, genuine smile, lifestyle photography"
        ),
    },
    "rooftop": {
        "name": "Rooftop",
        "description": "City skyline at golden hour",
        "prompt": (
            "the person in the reference photos on a city rooftop at golden hour, "
            "skyline bokeh, warm rim light, stylish evening outfit"
        ),
    },
    "nature": {
        "name": "Nature",
        "description": "Outdoors on a scenic trail",
        "prompt": (
            "the person in the reference photos hiking a scenic mountain trail, "
            "lush greenery, natural daylight, candid happy expression"
        ),
    },
    "sports": {
        "name": "Sports",
        "description": "Active and athletic",
        "prompt": (
            "the person in the reference photos playing a sport outdoors, "
            "athletic wear, dynamic pose, bright daylight, action photography"
        ),
    },
    "home": {
        "name": "At Home",
        "description": "Cozy candid shot at home",
        "prompt": (
            "cozy candid photo of the person in the reference photos at home, "
            "comfortable clothes, warm lamp light, relaxed genuine smile"
        ),
    },
    "winter": {
        "name": "Winter",
        "description": "Snowy scene with winter fashion",
        "prompt": (
            "the person in the reference photos in a snowy winter scene, "
            "stylish coat and scarf, soft overcast light, falling snow"
        ),
    },
}

# Fixed preview scenarios shown before purchase
SAMPLE_SCENARIOS = ("photoshoot", "rooftop", "coffee_new")

NEGATIVE_PROMPT = (
    "cartoon, illustration, distorted face, extra limbs, bad anatomy, "
    "text, watermark, logo, multiple people"
)


def get_prompt_for_scenario(scenario: str) -> tuple[str, str]:
    """
    Get the prompt and negative prompt for a given scenario.

    Args:
        scenario: Scenario key from SCENARIOS

    Returns:
        Tuple of (prompt, negative_prompt)
    """
    if scenario not in SCENARIOS:
        raise ValueError(f"Unknown scenario: {scenario}. Available: {list(SCENARIOS.keys())}")

    return SCENARIOS[scenario]["prompt"], NEGATIVE_PROMPT


def get_available_scenarios() -> list[dict]:
    """
    Get list of available scenarios with metadata.

    Returns:
        List of scenario dictionaries with id, name, and description
    """
    return [
        {
            "id": key,
            "name": preset["name"],
            "description": preset["description"],
        }
        for key, preset in SCENARIOS.items()
    ]


def is_known_scenario(scenario: str) -> bool:
    return scenario in SCENARIOS
