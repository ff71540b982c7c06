"""Instance configuration: model, platform defaults, merging, loading and validation."""