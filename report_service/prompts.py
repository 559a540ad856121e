"""
Prompt templates for Gemini and the request assembler.

Note: JSON example braces in templates filled with .format() are doubled
({{ }}) to escape them.
"""
from google.genai import types

from .ingestion import TranscriptionPayload

# --- Availability probe ---

PROBE_PROMPT = "Reply with the single word OK."


# --- Test report analysis ---

ANALYSIS_PROMPT = """You are an expert medical AI assistant. Analyze this medical test report comprehensively and provide detailed analysis for ANY type of disease or condition found.

IMPORTANT: Analyze ALL types of diseases and conditions, not limited to any specific dataset. Consider:
- Cardiovascular diseases (hypertension, heart disease, cholesterol issues)
- Metabolic disorders (diabetes, thyroid, kidney function)
- Liver diseases (hepatitis, liver function)
- Blood disorders (anemia, clotting issues)
- Infections (bacterial, viral markers)
- Autoimmune conditions
- Cancer markers
- Hormonal imbalances
- Nutritional deficiencies
- Any other conditions indicated by the test results

Extract and analyze:

1. ALL lab test values with their:
   - Test name
   - Value (numeric)
   - Unit (for blood pressure, put the full "systolic/diastolic mmHg" reading in the unit)
   - Reference/normal range
   - Severity assessment (normal, moderate, high, critical)
   - Clinical significance

2. Disease Analysis:
   - Identify ALL potential diseases/conditions suggested by abnormal values
   - For each condition: name, likelihood, why it is suspected, severity (Low, Moderate, High, Critical)

3. Overall Health Assessment:
   - Overall severity (Low, Moderate, High, Critical)
   - Most concerning findings and areas that need immediate attention

4. Recommended Medications:
   - Only suggest medications if clearly indicated by the test results
   - Include name, dosage (if applicable) and indication

5. Precautions and Lifestyle Recommendations:
   - Diet, exercise, monitoring requirements, warning signs
   - When to seek immediate medical attention

6. Additional Recommendations:
   - Specialist referrals, further diagnostic tests, follow-up

Return the response as a JSON object with this exact structure (no markdown, just pure JSON):
{
  "extractedData": {
    "tests": [
      {
        "name": "Test Name",
        "value": number,
        "unit": "unit",
        "referenceRange": "normal range description",
        "severity": "normal" | "moderate" | "high" | "critical",
        "clinicalSignificance": "What this value means clinically"
      }
    ],
    "overallSeverity": "Low" | "Moderate" | "High" | "Critical",
    "identifiedConditions": [
      {
        "conditionName": "Disease/Condition Name",
        "likelihood": "Low" | "Moderate" | "High" | "Very High",
        "explanation": "Why this condition is suspected",
        "severity": "Low" | "Moderate" | "High" | "Critical"
      }
    ]
  },
  "aiSummary": {
    "severityAssessment": "Explanation of overall health status and how concerning the results are",
    "diseaseAnalysis": "Analysis of all potential diseases/conditions identified",
    "deviationFromNormal": "How values deviate from normal ranges and what this means",
    "recommendedMedicines": [
      {"name": "Medication Name", "dosage": "Dosage if applicable", "indication": "Why it is recommended"}
    ],
    "precautions": ["Specific precaution with details"],
    "lifestyleRecommendations": {
      "diet": ["Dietary recommendation"],
      "exercise": ["Exercise recommendation"],
      "monitoring": ["What to monitor and how often"],
      "warningSigns": ["Warning signs to watch for"]
    },
    "additionalRecommendations": {
      "specialistReferrals": ["Specialist type if needed"],
      "furtherTests": ["Additional tests recommended"],
      "followUp": "Follow-up recommendations"
    }
  },
  "confidence": 0.85
}"""


# --- Prescription extraction ---

PRESCRIPTION_PROMPT = """You are an expert medical AI assistant. Analyze this prescription and extract all medication information accurately.

Extract the following information:

1. Medications. For each medication:
   - Medication name (generic or brand name)
   - Dosage (e.g., "500mg", "10ml", "1 tablet")
   - Frequency (e.g., "twice daily", "every 8 hours")
   - Duration (e.g., "7 days", "as needed")
   - Instructions (e.g., "after meals", "before bedtime")
   - Quantity (if mentioned)

2. Prescription details: doctor's name, date, patient name, diagnosis, additional notes.

Return the response as a JSON object with this exact structure (no markdown, just pure JSON):
{
  "medications": [
    {
      "name": "Medication Name",
      "dosage": "Dosage information",
      "frequency": "Frequency",
      "duration": "Duration",
      "instructions": "Special instructions if any",
      "quantity": "Quantity if mentioned"
    }
  ],
  "doctorName": "Doctor's name if visible",
  "date": "Prescription date if visible",
  "patientName": "Patient name if visible",
  "diagnosis": "Diagnosis or condition if mentioned",
  "additionalNotes": "Any additional notes or instructions"
}

Important:
- Extract ALL medications visible in the prescription
- Be accurate with dosages and frequencies
- If information is not visible, use null or empty string
- Handle both handwritten and printed prescriptions"""


# --- Knowledge ranking ---

KNOWLEDGE_RANKING_PROMPT = """Given this medical query: "{query}"

Available medical knowledge chunks:
{chunk_list}

Return ONLY a JSON array of the top {top_k} most relevant chunk IDs (numbers 1-{total}) that are most relevant to the query. Format: [1, 3, 5]"""

# Fixed query for report analysis; the report content is not known until the model reads it.
REPORT_RETRIEVAL_QUERY = "medical test analysis guidelines precautions medications disease management"


def assemble_request(instruction: str, payload: TranscriptionPayload, knowledge_block: str = "") -> list:
    """
    Build the `contents` list for a generate_content call.

    Images travel as an inline bytes part next to the prompt; extracted text
    is appended to the prompt itself.
    """
    prompt = instruction + knowledge_block
    if payload.is_image:
        return [prompt, types.Part.from_bytes(data=payload.data, mime_type=payload.media_type)]

    label = "PDF" if payload.media_type == "application/pdf" else "document"
    return [f"{prompt}\n\nExtracted text from {label}:\n{payload.text}"]
