"""
Short coach summary attached to every analysis: one line on the overall
score, one on the main leak, one feel cue for the next session.
"""

from typing import Optional

from swing_scoring.schemas.analysis import CoachSummary

OVERALL_LINES = [
    (92, "Momentum transfer is elite ({score}). You sequence like a pro and let the barrel do the work."),
    (85, "Momentum transfer is advanced ({score}). The pattern is solid; what is left are small efficiency gains."),
    (75, "Timing pattern is above average ({score}). You create flow, with a small leak or two to clean up."),
    (60, "You are creating speed ({score}), but power is lost as energy moves up through the body."),
    (0, "Right now the swing looks like effort rather than flow ({score}). Energy is not travelling cleanly through the body yet."),
]

LEAK_LINES = {
    "ground_flow": (
        "Ground flow is the leak: the lower body is not holding the load long enough for a clean hip start.",
        "Next step: load into the ground and hold it so the hips can fire on time.",
    ),
    "power_flow": (
        "Power flow is the leak: the torso is not accepting what the hips started, so it dumps early or spins flat.",
        "Next step: let the hips start and the torso follow instead of turning everything together.",
    ),
    "barrel_flow": (
        "Barrel flow is the leak: the hands and bat are not catching the wave of energy coming from the core.",
        "Next step: let the barrel snap late so it catches the energy instead of forcing it.",
    ),
}

BALANCED = (
    "Energy flows evenly from ground to power to barrel with no major leak.",
    "Next step: build consistency and let the pattern settle in with reps.",
)

SEQUENCE_NOTE = " The firing order is out of sequence, which caps the score until it is fixed."


def build_coach_summary(score: int, main_leak: Optional[str], sequence_broken: bool = False) -> CoachSummary:
    overall = next(line for floor, line in OVERALL_LINES if score >= floor).format(score=score)
    if sequence_broken:
        overall += SEQUENCE_NOTE
    leak, next_step = LEAK_LINES.get(main_leak, BALANCED)
    return CoachSummary(overall=overall, leak=leak, next_step=next_step)
