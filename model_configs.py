"""
Ball + Hoop Detector Model Configurations
Named detector weights with their per-class confidence floors and sampling rates
"""

# Every model must expose "Basketball" and "Basketball Hoop" classes
MODEL_CONFIGS = {
    # Custom trained two-class models
    "hoop_nano": {
        "model": "Yolo-Weights/hoop_yolo11n.pt",
        "description": "YOLOv11 Nano ball+hoop - Fastest, good for CPU",
        "fps": 12.0,
        "min_confidence": {"Basketball": 0.15, "Basketball Hoop": 0.35},
        "speed": "⭐⭐⭐⭐⭐",
        "accuracy": "⭐⭐⭐"
    },
    "hoop_small": {
        "model": "Yolo-Weights/hoop_yolo11s.pt",
        "description": "YOLOv11 Small ball+hoop - Good balance",
        "fps": 12.0,
        "min_confidence": {"Basketball": 0.20, "Basketball Hoop": 0.35},
        "speed": "⭐⭐⭐⭐",
        "accuracy": "⭐⭐⭐⭐"
    },
    "hoop_medium": {
        "model": "Yolo-Weights/hoop_yolo11m.pt",
        "description": "YOLOv11 Medium ball+hoop - Better small-ball recall",
        "fps": 15.0,
        "min_confidence": {"Basketball": 0.25, "Basketball Hoop": 0.40},
        "speed": "⭐⭐⭐",
        "accuracy": "⭐⭐⭐⭐⭐"
    },

    # Current baseline
    "current": {
        "model": "Yolo-Weights/best.pt",
        "description": "Current custom model (baseline)",
        "fps": 12.0,
        "min_confidence": {"Basketball": 0.15, "Basketball Hoop": 0.35},
        "speed": "⭐⭐⭐⭐",
        "accuracy": "⭐⭐⭐"
    }
}

# Recommended configurations for different scenarios
RECOMMENDED_CONFIGS = {
    "real_time": "hoop_nano",        # Quick 10 s previews, CPU only machines
    "balanced": "hoop_small",        # Full-video detection
    "high_accuracy": "hoop_medium",  # Far camera angles, small ball
}


def get_model_config(config_name):
    """Get model configuration by name"""
    if config_name in MODEL_CONFIGS:
        return MODEL_CONFIGS[config_name]
    elif config_name in RECOMMENDED_CONFIGS:
        return MODEL_CONFIGS[RECOMMENDED_CONFIGS[config_name]]
    else:
        print(f"Unknown config: {config_name}")
        print("Available configs:", list(MODEL_CONFIGS.keys()))
        print("Recommended configs:", list(RECOMMENDED_CONFIGS.keys()))
        return None


def list_all_configs():
    """List all available model configurations"""
    print("\n🏀 Available Ball + Hoop Detector Models:\n")

    for name, config in MODEL_CONFIGS.items():
        print(f"📋 {name}:")
        print(f"   Model: {config['model']}")
        print(f"   Description: {config['description']}")
        print(f"   Sampling: {config['fps']} fps")
        floors = ", ".join(f"{k} >= {v}" for k, v in config['min_confidence'].items())
        print(f"   Confidence floors: {floors}")
        print(f"   Speed: {config['speed']}")
        print(f"   Accuracy: {config['accuracy']}")
        print()

    print("🎯 Recommended Configurations:")
    for scenario, config_name in RECOMMENDED_CONFIGS.items():
        config = MODEL_CONFIGS[config_name]
        print(f"   {scenario}: {config_name} ({config['model']})")


if __name__ == "__main__":
    list_all_configs()
