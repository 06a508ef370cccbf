"""Built-in training modules and their vision needs."""

from adapt_live_coach.models import BranchRule, ModuleNeeds, ModuleStep, StepNeeds, TrainingModule


CHANGE_A_TIRE_MODULE = TrainingModule(
    slug="change-a-tire",
    title="Change a Tire",
    steps=(
        ModuleStep(
            title="Loosen the lug nuts",
            description="With the car still on the ground, use the lug wrench to loosen each lug nut half a turn counter-clockwise.",
            checkpoint="Why loosen the nuts before jacking the car up?",
        ),
        ModuleStep(
            title="Jack up the vehicle",
            description="Place the jack under the frame next to the flat tire and raise it until the tire is about six inches off the ground.",
        ),
        ModuleStep(
            title="Swap the tire",
            description="Remove the lug nuts and the flat, mount the spare, and hand-tighten the lug nuts.",
        ),
        ModuleStep(
            title="Lower and tighten",
            description="Lower the car and tighten the lug nuts in a star pattern with the lug wrench.",
            checkpoint="In what pattern should the lug nuts be tightened?",
        ),
    ),
)

DISTRACTION_SAFETY_MODULE = TrainingModule(
    slug="distraction-safety",
    title="Roadside Distraction Safety",
    steps=(
        ModuleStep(
            title="Put the phone away",
            description="Stow your phone in your pocket or the car. Both hands stay free while working near traffic.",
        ),
        ModuleStep(
            title="Check your surroundings",
            description="Look up and down the road and confirm the hazard lights are on before you continue.",
        ),
    ),
)

SANDWICH_MODULE = TrainingModule(
    slug="sandwich-making",
    title="How to Make Our Signature Sandwich",
    steps=(
        ModuleStep(
            title="Prepare Your Station",
            description="Wash your hands and put on a fresh pair of gloves. Ensure your cutting board is clean and your knife is sharp.",
            checkpoint="What is the very first thing you should do?",
        ),
        ModuleStep(
            title="Toast the Sourdough Bread",
            description="Place two slices of sourdough in the conveyor toaster set to level 3. It should be golden brown, not dark.",
            checkpoint="What setting should the toaster be on?",
        ),
        ModuleStep(
            title="Apply the Signature Sauce",
            description="Spread one tablespoon of signature aioli on both slices, covering them edge to edge.",
        ),
    ),
)

BUILTIN_MODULES = {
    module.slug: module
    for module in (CHANGE_A_TIRE_MODULE, DISTRACTION_SAFETY_MODULE, SANDWICH_MODULE)
}

BUILTIN_MODULE_NEEDS: ModuleNeeds = {
    "change-a-tire": {
        0: StepNeeds(
            required=("lug wrench",),
            forbidden=("phone",),
            branch_on=(BranchRule(item="phone", module="distraction-safety"),),
        ),
        1: StepNeeds(required=("jack",), forbidden=("phone",)),
        3: StepNeeds(required=("lug wrench",)),
    },
    "distraction-safety": {
        0: StepNeeds(forbidden=("phone",)),
    },
    "sandwich-making": {
        0: StepNeeds(required=("gloves",)),
        2: StepNeeds(required=("knife",), forbidden=("fork",)),
    },
}
