"""Built-in prompt templates.

Each template uses ``{{key}}`` placeholders resolved by the renderer. The
marker literals are rendered from constants so the agent always sees the
exact strings the marker parser accepts.
"""

DEFAULT_TASK_TEMPLATE = """\
# Task

## Goals
- Goal 1

## Checklist
- [ ] Item 1

## Notes
(Update this as you work)
"""

BUILDING_TEMPLATE = """\
───────────────────────────────────────────────────────────────────────
RALPH LOOP: {{loopName}} | BUILD | Iteration {{iteration}}{{maxStr}}
───────────────────────────────────────────────────────────────────────

## Task File ({{taskFile}})
{{taskContent}}

---

{{hints}}

## Instructions
1. Study the task file and choose the most important unchecked item
2. Before making changes, search the codebase (don't assume not implemented)
3. Implement the item
4. Run tests/validation to verify
5. Update the task file: mark completed items, note any discoveries
6. When ALL items are complete, output on its own line: {{completeMarker}}
7. If a precondition fails or the task is IMPOSSIBLE, output on its own line: {{abortMarker}}
8. Otherwise end your turn normally; the next iteration starts automatically
"""

PLANNING_TEMPLATE = """\
───────────────────────────────────────────────────────────────────────
RALPH LOOP: {{loopName}} | PLAN | Iteration {{iteration}}{{maxStr}}
───────────────────────────────────────────────────────────────────────

## Task File ({{taskFile}})
{{taskContent}}

---

{{hints}}

## Instructions (PLANNING MODE)
1. Study the task file: {{taskFile}}
2. Study the existing codebase to understand current state
3. Compare requirements against existing implementation (gap analysis)
4. Update the task file with a prioritized plan:
   - Items yet to be implemented, sorted by priority
   - Mark completed items as [x]
   - Note any discovered issues or missing elements

IMPORTANT: Plan only. Do NOT implement anything. Do NOT write code. Do NOT commit.
Do NOT assume functionality is missing; confirm with code search first.

5. When the plan is complete, output on its own line: {{completeMarker}}
6. If planning is IMPOSSIBLE, output on its own line: {{abortMarker}}
7. Otherwise end your turn normally to refine further next iteration
"""

CHECKPOINT_TEMPLATE = """\
───────────────────────────────────────────────────────────────────────
CHECKPOINT: MANDATORY FILE UPDATE | {{loopName}} | Iteration {{iteration}}{{maxStr}}
───────────────────────────────────────────────────────────────────────

## Task File ({{taskFile}})
{{taskContent}}

---

{{hints}}

You MUST update the task file ({{taskFile}}) NOW.
This is not optional. The file is verified when this turn ends.

Append this section to the task file:

## Checkpoint (Iteration {{iteration}})

### Completed
- [x] Items done so far (update the checklist above too)

### Failed Approaches
- Approach X: failed because Y (DO NOT RETRY THESE)

### Key Decisions
- Decision A: rationale

### Current State
- What's working, what's partially done

### Next Steps
1. Most important next item
2. Second priority

After updating the file, end your turn normally to continue.
"""

ROTATION_BOOTSTRAP_TEMPLATE = """\
───────────────────────────────────────────────────────────────────────
RALPH LOOP RESUMED: Session Rotation
Loop: {{loopName}} | Iteration: {{iteration}}{{maxStr}} | Rotation #{{sessionRotations}}
───────────────────────────────────────────────────────────────────────

Your context has been refreshed via session rotation. You have no memory of
earlier turns; the task file is the complete record of progress.

## Task File ({{taskFile}})
{{taskContent}}

---

{{hints}}

It contains your progress, failed approaches, decisions, and next steps.
Continue working from where the latest checkpoint left off.

- When ALL items are complete, output on its own line: {{completeMarker}}
- If the task is IMPOSSIBLE, output on its own line: {{abortMarker}}
- Otherwise end your turn normally; the next iteration starts automatically
"""
