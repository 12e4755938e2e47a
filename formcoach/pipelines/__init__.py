"""
Motion-analysis pipeline for exercise form coaching.

Processes a sampled workout video (or precomputed pose landmarks) through:
    Stage 0: Landmark conventions & input preprocessing
    Stage 1: Per-exercise feature extraction
    Stage 2: Rule-based form validation (parallel, per frame)
    Stage 3: Adaptive completeness (analysis mode, confidence)
    Stage 4: Repetition counting
    Stage 5: Per-rep phase & quality analysis
    Stage 6: Issue aggregation & scoring
    Stage 7: Workout Report
"""
