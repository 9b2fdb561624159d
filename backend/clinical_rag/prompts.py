"""Prompt templates for the guideline pipeline and the transcript workflow.

Templates use ``str.format`` placeholders; literal braces in the JSON
examples are doubled.
"""

from __future__ import annotations

GUIDELINES_SYSTEM_PROMPT = """\
You are a medical AI assistant specialized in providing evidence-based \
clinical recommendations using therapeutic guidelines. Your role is to:

1. Analyze retrieved therapeutic guideline chunks for relevance and accuracy
2. Synthesize information from multiple guideline sources
3. Provide evidence-based recommendations that cite their sources

You must:
- Prioritize evidence-based recommendations
- Consider patient-specific factors (age, weight, comorbidities)
- Provide clear dosing instructions with safety warnings
- Include monitoring and follow-up recommendations
- Highlight any conflicts or variations between guidelines
- Answer with JSON only when a JSON structure is requested
"""

FILTER_PROMPT = """\
Score each therapeutic guideline chunk for relevance to this clinical scenario.

CLINICAL SCENARIO:
Patient Information: {patient_info}
Condition: {condition}
Severity: {severity}

GUIDELINE CHUNKS TO EVALUATE:
{guideline_chunks}

Give every chunk a relevance_score from 0 to 100 based on:
1. Direct relevance to the condition
2. Applicability to patient demographics (age, weight)
3. Severity level match
4. Treatment recommendations included
5. Evidence quality

Return a JSON array with one element per chunk, using the chunk ids given above:
[
  {{
    "chunk_id": "chunk id",
    "relevance_score": 85,
    "reasoning": "Direct match for condition and severity level",
    "key_points": ["Key clinical points from this chunk"]
  }}
]
"""

SYNTHESIS_PROMPT = """\
Synthesize the ranked therapeutic guideline chunks below into one coherent, \
evidence-based recommendation for this clinical scenario.

CLINICAL SCENARIO:
Patient Information: {patient_info}
Condition: {condition}
Severity: {severity}

RANKED GUIDELINE CHUNKS:
{guideline_chunks}

The synthesis must:
1. Resolve any conflicts between guidelines
2. Prioritize higher evidence levels
3. Consider patient-specific factors
4. Provide clear, actionable recommendations

Return a JSON object:
{{
  "synthesis": "Comprehensive synthesis of guideline information",
  "conflicts": ["Any conflicts between guidelines and how they were resolved"],
  "consensus": "Areas of agreement across guidelines",
  "patient_specific": "How recommendations are tailored to this patient",
  "final_recommendations": "Final evidence-based recommendations"
}}
"""

RECOMMENDATION_PROMPT = """\
Based on the clinical scenario and retrieved therapeutic guidelines below, \
provide an evidence-based recommendation.

CLINICAL SCENARIO:
Patient Information: {patient_info}
Condition: {condition}
Severity: {severity}
Presenting Complaint: {presenting_complaint}

RETRIEVED THERAPEUTIC GUIDELINES:
{guideline_chunks}

Return a JSON object:
{{
  "guideline_analysis": "Summary of relevant guidelines and their applicability",
  "evidence_assessment": "Quality and relevance assessment of retrieved evidence",
  "recommendations": [
    {{
      "medication": "Medication name",
      "dose": "Specific dose with units",
      "frequency": "Dosing frequency",
      "duration": "Treatment duration",
      "route": "Administration route",
      "evidence_level": "A/B/C/D",
      "guideline_source": "Specific guideline reference"
    }}
  ],
  "safety_considerations": ["Age-appropriate dosing, contraindications, interactions"],
  "monitoring": ["Monitoring parameters, frequency, red flags"],
  "evidence_level": "Overall evidence level (A/B/C/D)",
  "confidence": 85,
  "guideline_sources": ["Guideline citations with version/date"],
  "warnings": ["Important safety warnings"]
}}
"""

# --- Transcript workflow ---

JSON_ONLY_SYSTEM_PROMPT = (
    "You are a medical AI assistant that {task}. "
    "Return only valid JSON without any markdown formatting or code blocks."
)

PATIENT_EXTRACTION_PROMPT = """\
Extract patient information from the following clinical transcript.

Fields:
- name: string (if mentioned, otherwise "Unknown")
- age: number (in years)
- weight: number (in kg)
- height: number (in cm, if mentioned, otherwise null)
- sex: "M" or "F" (if mentioned, otherwise null)
- presenting_complaint: string (main complaint)
- history: string (relevant history)
- examination: string (examination findings)
- assessment: string (clinical assessment)

Transcript: {transcript}

Return ONLY the JSON object, no additional text.
"""

CONDITION_ASSESSMENT_PROMPT = """\
Based on the patient information and transcript, determine the primary \
condition and its severity.

Patient Info: {patient_info}
Transcript: {transcript}

Return a JSON object with:
- condition: string (primary diagnosis)
- severity: "mild", "moderate", or "severe"
- confidence: number (0-100)

Return ONLY the JSON object, no additional text.
"""

MEDICATION_PROPOSAL_PROMPT = """\
Propose weight-based medication doses for this patient, grounded in the \
guideline summary.

Patient: {patient_info}
Condition: {condition}
Severity: {severity}
Guideline Summary: {guideline_summary}

Doses are expressed PER KILOGRAM; the final dose is calculated separately.
Return a JSON array:
[
  {{
    "medication": "string",
    "dose_per_kg": 0.15,
    "dose_unit": "mg",
    "max_dose": 10,
    "max_dose_unit": "mg",
    "frequency": "string",
    "route": "string"
  }}
]
Use null for max_dose when the guidelines give no ceiling.
Return ONLY the JSON array, no additional text.
"""

MANAGEMENT_PLAN_SYSTEM_PROMPT = (
    "You are a medical AI assistant that creates management plans based on "
    "clinical guidelines. Provide clear, actionable recommendations that follow "
    "evidence-based medicine principles."
)

MANAGEMENT_PLAN_PROMPT = """\
Generate a management plan for this patient based on the clinical assessment \
and relevant guidelines.

Patient: {patient_info}
Condition: {condition}
Severity: {severity}
Calculated Medication Doses: {medications}
Guideline Summary: {guideline_summary}

Include:
1. Immediate management steps
2. Monitoring requirements
3. Follow-up recommendations
4. Patient education points
5. When to seek further medical attention

Return the plan as plain text.
"""

# --- Agentic review ---

GUIDELINE_REVIEW_PROMPT = """\
You are the guideline review agent. Judge whether the guideline evidence \
below is sufficient to manage this clinical scenario.

Patient: {patient_info}
Condition: {condition}
Severity: {severity}

GUIDELINE EVIDENCE:
{guideline_chunks}

Return a JSON object:
{{
  "reasoning": "Why the evidence is or is not sufficient",
  "confidence": 85,
  "recommendations": ["Key recommendations supported by the evidence"],
  "concerns": ["Gaps or conflicts in the evidence"],
  "needs_more_info": false,
  "suggested_queries": ["Search queries that would close the gaps"]
}}
confidence is 0-100.
"""
