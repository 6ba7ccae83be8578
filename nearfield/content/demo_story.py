"""The demo story: two scenes at the Digger bar in Tsim Sha Tsui.

Scene A (bar entrance): Fat Tang is threatening Xiao Xue, the bartender.
The player can cut in and talk him down for up to 3 turns, or walk past.
Scene B (bar interior): Xiao Xue is alone and terrified. Five turns of
patience get the truth out of her; walking away ends the story with nothing.

DEMO_SCRIPTS feeds the canned provider, DEMO_BRIEFS the generative one.
"""

STORY_ID = "demo-story"

_STATUS_OPEN = {
    "is_scene_over": False,
    "next_scene_id": None,
    "is_story_over": False,
    "new_clue": None,
}


def _batch(scene_id, events, next_action, entity_updates=(), **status):
    return {
        "story_id": STORY_ID,
        "current_scene_id": scene_id,
        "new_events": list(events),
        "entity_updates": list(entity_updates),
        "scene_status": {**_STATUS_OPEN, **status},
        "next_action_type": next_action,
    }


def _narration(unit_id, content, actor="System"):
    return {"unit_id": unit_id, "type": "Narrative", "actor": actor, "content": content}


def _turn(unit_id, actor, content=""):
    return {"unit_id": unit_id, "type": "InteractionTurn", "actor": actor, "content": content}


# ── Scene A: bar entrance ─────────────────────────────────

SCENE_A = {
    "LOAD_SCENE": _batch(
        "scene-a",
        [
            _narration("U001", "You push open the heavy wooden door of the Digger bar. "
                       "Stale beer and tobacco hit you in the face."),
            _narration("U002", "Under the dim lights, a hulking figure is leaning over "
                       "the girl behind the counter."),
        ],
        "PLAYING_NARRATIVE",
    ),
    "REQUEST_NARRATIVE": {
        "batch_1": _batch(
            "scene-a",
            [
                {
                    "unit_id": "U003",
                    "type": "InterventionPoint",
                    "actor": "Fat Tang",
                    "content": "\"Thirty grand of my goods, girl. Where is it?\"",
                    "hint": "[Moment] Fat Tang is about to get rough. Step in, or walk on by.",
                    "policy": {
                        "max_turns": 3,
                        "goal": "Stop Fat Tang from hurting Xiao Xue",
                        "constraints": "Fat Tang is short-tempered and has men nearby",
                    },
                },
            ],
            "AWAITING_INTERVENTION",
            interaction_policy={"max_turns": 3, "current_turn": 0},
        ),
    },
    "INTERACT": {
        "turn_1": _batch(
            "scene-a",
            [
                _turn("T001_P", "Player"),
                _turn("T001_N", "Fat Tang", "(Side-eyes you) \"Who asked you? This is our "
                      "business. Stay out of it.\""),
            ],
            "AWAITING_INTERACTION",
            [{"entity_id": "NPC_FAT_TANG", "composure": 90, "status": "alert"}],
            interaction_policy={"max_turns": 3, "current_turn": 1},
        ),
        "turn_2": _batch(
            "scene-a",
            [
                _turn("T002_P", "Player"),
                _turn("T002_N", "Fat Tang", "(Slams the counter) \"Rough? You want to die? "
                      "This one stole three hundred grand of my goods and I haven't "
                      "laid a finger on her yet!\""),
            ],
            "AWAITING_INTERACTION",
            [{"entity_id": "NPC_FAT_TANG", "composure": 70, "status": "provoked"}],
            interaction_policy={"max_turns": 3, "current_turn": 2},
        ),
        "turn_3": _batch(
            "scene-a",
            [
                _turn("T003_P", "Player"),
                _turn("T003_N", "Fat Tang", "\"Enough! I've got no time for your crap!\""),
                _narration("U004", "(Fat Tang waves a hand. Two heavies step out of the "
                           "shadows and pin your arms.)"),
                _narration("U005", "\"Get lost! Stick your nose in again and it won't just be "
                           "the door.\" (You're shoved out onto the wet cobblestones.)"),
            ],
            "SCENE_ENDED",
            [{"entity_id": "NPC_FAT_TANG", "composure": 40, "status": "furious"}],
            is_scene_over=True,
            next_scene_id="scene-b",
            new_clue={
                "clue_id": "CLUE_002_COURIER_ID",
                "title": "Courier ID badge",
                "summary": "Name: Ah Wai. Staff number: SF-3247. The photo shows a young man. "
                           "The back has the bartender \"Xiao Xue\"'s name and phone number.",
                "status": "untracked",
                "story_id": STORY_ID,
            },
            interaction_policy={"max_turns": 3, "current_turn": 3},
        ),
    },
    "PASS": _batch(
        "scene-a",
        [
            _narration("U010", "You turn away quietly and pretend you saw nothing. The noise "
                       "of the bar fades behind you."),
            _narration("U011", "(Maybe you missed something important, but at least you "
                       "stayed out of trouble.)"),
        ],
        "SCENE_ENDED",
        is_scene_over=True,
        next_scene_id="scene-b",
    ),
}


# ── Scene B: bar interior ─────────────────────────────────

_XIAO_XUE = "Xiao Xue"

SCENE_B = {
    "LOAD_SCENE": _batch(
        "scene-b",
        [
            _narration("U020", "You walk back into the bar. Fat Tang is gone. Behind the "
                       "counter Xiao Xue is collecting glasses with shaking hands."),
            _narration("U021", "She sees you come back; surprise and fear flash in her eyes."),
            {
                "unit_id": "U022",
                "type": "InterventionPoint",
                "actor": _XIAO_XUE,
                "content": "\"You... why did you come back? They'll kill me...\"",
                "hint": "[Moment] She looks terrified, but she might be willing to tell the "
                        "truth. Try to calm her down, or leave.",
                "policy": {
                    "max_turns": 5,
                    "goal": "Get Xiao Xue to tell the truth about the goods",
                    "constraints": "Xiao Xue is terrified; she needs patience and trust",
                },
            },
        ],
        "AWAITING_INTERVENTION",
        [{"entity_id": "NPC_XIAO_XUE", "composure": 30, "status": "terrified"}],
        interaction_policy={"max_turns": 5, "current_turn": 0},
    ),
    "INTERACT": {
        "turn_1": _batch(
            "scene-b",
            [
                _turn("T020_P", "Player"),
                _turn("T020_N", _XIAO_XUE, "(Head down) \"You don't get it... they're not "
                      "ordinary thugs...\""),
            ],
            "AWAITING_INTERACTION",
            [{"entity_id": "NPC_XIAO_XUE", "composure": 35, "status": "wary"}],
            interaction_policy={"max_turns": 5, "current_turn": 1},
        ),
        "turn_2": _batch(
            "scene-b",
            [
                _turn("T021_P", "Player"),
                _narration("U023", "(At your words her shoulders start to shake and her eyes "
                           "redden.)"),
                _turn("T021_N", _XIAO_XUE, "\"I... I didn't steal any goods... my boyfriend "
                      "left them... he said he'd come back for them... he never did...\""),
            ],
            "AWAITING_INTERACTION",
            [{"entity_id": "NPC_XIAO_XUE", "composure": 25, "status": "crying"}],
            interaction_policy={"max_turns": 5, "current_turn": 2},
        ),
        "turn_3": _batch(
            "scene-b",
            [
                _turn("T022_P", "Player"),
                _turn("T022_N", _XIAO_XUE, "\"The stuff... it's hidden in the basement... I "
                      "don't dare touch it... if you help me... I'll tell you where.\""),
            ],
            "PLAYING_NARRATIVE",
            [{"entity_id": "NPC_XIAO_XUE", "composure": 40, "status": "trusting"}],
            interaction_policy={"max_turns": 5, "current_turn": 3},
        ),
        "turn_4": _batch(
            "scene-b",
            [
                _turn("T023_P", "Player"),
                _turn("T023_N", _XIAO_XUE, "\"My boyfriend is Ah Wai... he used to run "
                      "jobs for Fat Tang... then he said he wanted out... they won't let "
                      "him go...\""),
            ],
            "AWAITING_INTERACTION",
            [{"entity_id": "NPC_XIAO_XUE", "composure": 50, "status": "opening up"}],
            interaction_policy={"max_turns": 5, "current_turn": 4},
        ),
        "turn_5": _batch(
            "scene-b",
            [
                _turn("T024_P", "Player"),
                _turn("T024_N", _XIAO_XUE, "\"Wait... I have a photo... Ah Wai left it... "
                      "maybe it helps you...\""),
                _narration("U024", "(She pulls a photo from under the counter: a young man "
                           "posing with a few gang members.)"),
                _narration("U025", "\"Thank you... really...\" (For the first time there is "
                           "a trace of hope in her eyes.)"),
            ],
            "SCENE_ENDED",
            [{"entity_id": "NPC_XIAO_XUE", "composure": 60, "status": "grateful"}],
            is_scene_over=True,
            is_story_over=True,
            new_clue={
                "clue_id": "CLUE_003_BAR_SURVEILLANCE",
                "title": "Surveillance footage",
                "summary": "The camera shows Ah Wai and Xiao Xue meeting at the back door at "
                           "11pm three nights ago. They hand over a black briefcase. Fat Tang "
                           "shows up with his men and Ah Wai runs.",
                "status": "untracked",
                "story_id": STORY_ID,
            },
            interaction_policy={"max_turns": 5, "current_turn": 5},
        ),
        "default": _batch(
            "scene-b",
            [
                _turn("T025_P", "Player"),
                _turn("T025_N", _XIAO_XUE, "\"I... I've told you everything I know... "
                      "please help me...\""),
                _narration("U026", "(She looks exhausted. There is nothing more she can give "
                           "you.)"),
            ],
            "SCENE_ENDED",
            is_scene_over=True,
            is_story_over=True,
            # past the end of the budget; the engine clamps this
            interaction_policy={"max_turns": 5, "current_turn": 6},
        ),
    },
    "REQUEST_NARRATIVE": {
        "batch_1": _batch(
            "scene-b",
            [
                _narration("U027", "(A police siren wails past outside. Xiao Xue flinches "
                           "and glances at the basement door.)"),
            ],
            "AWAITING_INTERACTION",
        ),
    },
    "PASS": _batch(
        "scene-b",
        [
            _narration("U030", "You shake your head and walk out. Disappointment flickers in "
                       "Xiao Xue's eyes."),
            _narration("U031", "(Maybe you'll never learn the truth behind the \"three hundred "
                       "grand of goods\".)"),
        ],
        "SCENE_ENDED",
        [{"entity_id": "NPC_XIAO_XUE", "composure": 20, "status": "despairing"}],
        is_scene_over=True,
        is_story_over=True,
        new_clue={
            "clue_id": "CLUE_003_C",
            "title": "Missed opportunity",
            "summary": "You chose to leave. Xiao Xue's secret stays in that dim bar for good.",
            "status": "untracked",
            "story_id": STORY_ID,
        },
    ),
}


DEMO_SCRIPTS = {
    f"{STORY_ID}:scene-a": SCENE_A,
    f"{STORY_ID}:scene-b": SCENE_B,
}


DEMO_BRIEFS = {
    f"{STORY_ID}:scene-a": {
        "title": "Bar entrance",
        "setting": "Late night in Tsim Sha Tsui, outside the Digger bar. Neon flickers "
                   "and the air smells of trouble.",
        "entities": ["Fat Tang (NPC_FAT_TANG), short-tempered gang enforcer",
                     "Xiao Xue (NPC_XIAO_XUE), frightened bartender"],
        "policy": {
            "max_turns": 3,
            "goal": "Stop Fat Tang from hurting Xiao Xue",
            "constraints": "Fat Tang is short-tempered and has men nearby",
        },
        "next_scene_id": "scene-b",
        "is_story_terminal": False,
    },
    f"{STORY_ID}:scene-b": {
        "title": "Bar interior",
        "setting": "Inside the Digger bar under dim lights. Xiao Xue is wiping glasses "
                   "behind the counter.",
        "entities": ["Xiao Xue (NPC_XIAO_XUE), frightened bartender hiding her boyfriend's goods"],
        "policy": {
            "max_turns": 5,
            "goal": "Get Xiao Xue to tell the truth about the goods",
            "constraints": "Xiao Xue is terrified; she needs patience and trust",
        },
        "next_scene_id": None,
        "is_story_terminal": True,
    },
}
